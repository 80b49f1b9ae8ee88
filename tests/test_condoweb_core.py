"""Tests for the CondoWeb API helpers, key derivation and account types."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest
import requests

import condoweb_core
from condoweb_core import (
    USER_AGENT,
    AccountType,
    CondoWebAPIError,
    Credentials,
    UnknownAccountTypeError,
    account_financial_years_key,
    account_statement_key,
    account_type_name,
    balance_budget_key,
    condoweb_api_request,
    fetch_account_statement,
    fetch_transaction_data,
    find_current_year,
    key_segment,
    payload_records,
    transaction_data_key,
)

CREDENTIALS = Credentials(
    token="tok",
    manager_slug="acme",
    manager_id="m-1",
    association_id="assoc-1",
)


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text
    return response


@pytest.mark.parametrize(
    "code, name",
    [
        (0, "Assets"),
        (1, "Expenses"),
        (2, "Receivables"),
        (3, "Liabilities"),
        (4, "Revenues"),
        (5, "Suppliers"),
        (6, "Capital"),
        (7, "Owners"),
    ],
)
def test_account_type_name_covers_the_enumeration(code, name):
    assert account_type_name(code) == name


@pytest.mark.parametrize("code", [99, -1, 8, None, "4", True, 4.0])
def test_account_type_name_rejects_unknown_codes(code):
    """Out-of-range codes must raise instead of yielding a blank name."""
    with pytest.raises(UnknownAccountTypeError) as excinfo:
        account_type_name(code)
    assert excinfo.value.code == code


def test_account_type_enum_has_eight_members():
    assert [member.value for member in AccountType] == list(range(8))


def test_api_request_sends_credentials_headers(monkeypatch):
    """Every call carries the token, ids and the browser user agent."""
    fake_request = MagicMock(return_value=_response(payload={"data": []}))
    monkeypatch.setattr(condoweb_core.requests, "request", fake_request)

    payload = condoweb_api_request(CREDENTIALS, "/financials/get-all-accounts")

    assert payload == {"data": []}
    fake_request.assert_called_once_with(
        "GET",
        "https://acme.condoweb.app/api/v1/financials/get-all-accounts",
        headers={
            "token": "tok",
            "association-id": "assoc-1",
            "manager-id": "m-1",
            "user-agent": USER_AGENT,
        },
        params=None,
        data=None,
    )


def test_api_request_raises_with_status_and_body(monkeypatch):
    fake_request = MagicMock(return_value=_response(status_code=403, text="Forbidden token"))
    monkeypatch.setattr(condoweb_core.requests, "request", fake_request)

    with pytest.raises(CondoWebAPIError) as excinfo:
        condoweb_api_request(CREDENTIALS, "/financials/get-financial-years")

    error = excinfo.value
    assert isinstance(error, requests.HTTPError)
    assert error.status_code == 403
    assert error.body == "Forbidden token"
    assert error.api_path == "/financials/get-financial-years"
    assert "(403)" in str(error)


def test_fetch_account_statement_builds_query():
    fetch = MagicMock(return_value={"data": []})

    fetch_account_statement(fetch, 7, "FY24", "assoc-1")

    fetch.assert_called_once_with(
        "/financials/get-account-statement/7",
        params={"isNextYear": "false", "associationId": "assoc-1", "shortenedName": "FY24"},
    )


def test_fetch_transaction_data_posts_form_fields():
    fetch = MagicMock(return_value={"data": []})

    fetch_transaction_data(fetch, 42, "assoc-1")

    fetch.assert_called_once_with(
        "/financials/get-account-statement-transaction-data",
        method="POST",
        data={"transactionNumber": "42", "accountNumber": "0", "associationId": "assoc-1"},
    )


def test_cache_keys_follow_resource_layout():
    assert balance_budget_key("2024-2025") == "financials/get-balance-budgets/2024-2025.json"
    assert account_financial_years_key(7) == "financials/get-account-statements/7/financial-years.json"
    assert account_statement_key(7, "FY24") == "financials/get-account-statements/7/FY24.json"
    assert transaction_data_key(42) == "financials/get-account-statement-transaction-data/42.json"


def test_key_segments_cannot_create_subdirectories():
    """Separators are percent-encoded so distinct labels never share a key."""
    assert balance_budget_key("2023/2024") == "financials/get-balance-budgets/2023%2F2024.json"
    assert balance_budget_key("2023-2024") == "financials/get-balance-budgets/2023-2024.json"
    assert key_segment("a\\b") == "a%5Cb"
    assert key_segment(" 12B ") == "12B"
    with pytest.raises(ValueError):
        key_segment("..")
    with pytest.raises(ValueError):
        key_segment("  ")


def test_payload_records_requires_data_list():
    assert payload_records({"data": [{"a": 1}]}) == [{"a": 1}]
    with pytest.raises(ValueError, match="accounts.json"):
        payload_records({"error": "nope"}, "accounts.json")
    with pytest.raises(ValueError):
        payload_records([1, 2])


def test_payload_records_rejects_non_object_records():
    """A record that is not an object must fail like a missing data list."""
    with pytest.raises(ValueError, match="accounts.json has non-object records"):
        payload_records({"data": ["oops", {"accountNumber": 7}]}, "accounts.json")


def test_find_current_year():
    years = [{"nomAbrege": "FY23"}, {"nomAbrege": "FY24", "isCurrent": True}]
    assert find_current_year(years)["nomAbrege"] == "FY24"
    assert find_current_year([{"nomAbrege": "FY23", "isCurrent": False}]) is None


def test_find_current_year_warns_when_several_are_current(caplog):
    years = [
        {"nomAbrege": "FY23", "isCurrent": True},
        {"nomAbrege": "FY24", "isCurrent": True},
    ]
    with caplog.at_level(logging.WARNING):
        current = find_current_year(years)

    assert current["nomAbrege"] == "FY23"
    assert "2 financial years are flagged current" in caplog.text
