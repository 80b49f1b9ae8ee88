"""
CondoWeb API and Resource Core Module

This module provides reusable functions for talking to the CondoWeb private API
and for naming the resources it returns. All functions are self-contained with
no file I/O - data is passed as parameters and returned as dictionaries.

Used by:
- Scrape CLI (condoweb_scrape.py)
- Tabulate CLI (condoweb_tabulate.py)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

# CondoWeb API base URL (one subdomain per property manager)
CONDOWEB_API_BASE = "https://{manager_slug}.condoweb.app/api/v1"

# The service rejects requests without a browser-like user agent
USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 6.0; Nexus 5 Build/MRA58N) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/128.0.0.0 Mobile Safari/537.36"
)

# Placeholder account number accepted by the transaction detail endpoint
TRANSACTION_DETAIL_ACCOUNT_NUMBER = "0"


# ============================================================================
# Errors
# ============================================================================

class CondoWebAPIError(requests.HTTPError):
    """Raised when the CondoWeb API answers with anything but HTTP 200."""

    def __init__(self, api_path: str, status_code: int, body: str):
        super().__init__(f"Failed to fetch {api_path} ({status_code}): {body}")
        self.api_path = api_path
        self.status_code = status_code
        self.body = body


class ResourceNotCachedError(LookupError):
    """Raised when a resource required for tabulation is missing from the cache."""

    def __init__(self, key: str):
        super().__init__(f"{key} is not cached")
        self.key = key


class UnknownAccountTypeError(ValueError):
    """Raised for account type codes outside the known enumeration."""

    def __init__(self, code):
        super().__init__(f"Unknown account type code: {code!r}")
        self.code = code


# ============================================================================
# Account Types
# ============================================================================

class AccountType(IntEnum):
    """
    Account type codes used by the CondoWeb financials endpoints.

    Inferred from the filters on the Financials > Budgets page. The mapping may
    differ per association.
    """

    Assets = 0
    Expenses = 1
    Receivables = 2
    Liabilities = 3
    Revenues = 4
    Suppliers = 5
    Capital = 6
    Owners = 7


def account_type_name(code) -> str:
    """
    Return the display name for an account type code.

    Args:
        code: Numeric account type code from an upstream record

    Returns:
        Enumeration member name (e.g. "Revenues" for 4)

    Raises:
        UnknownAccountTypeError: If the code is not one of the known types
    """
    # bool is an int subclass but never a valid code
    if isinstance(code, bool) or not isinstance(code, int):
        raise UnknownAccountTypeError(code)
    try:
        return AccountType(code).name
    except ValueError:
        raise UnknownAccountTypeError(code) from None


# ============================================================================
# Credentials
# ============================================================================

@dataclass(frozen=True)
class Credentials:
    """Values attached to every CondoWeb API call."""

    token: str
    manager_slug: str
    manager_id: str
    association_id: str

    @property
    def api_base(self) -> str:
        return CONDOWEB_API_BASE.format(manager_slug=self.manager_slug)


# ============================================================================
# CondoWeb API Requests
# ============================================================================

def build_headers(credentials: Credentials) -> dict:
    """Build the authentication headers sent with every request."""
    return {
        "token": credentials.token,
        "association-id": credentials.association_id,
        "manager-id": credentials.manager_id,
        "user-agent": USER_AGENT,
    }


def condoweb_api_request(credentials: Credentials, api_path: str, method: str = "GET",
                         params: dict = None, data: dict = None):
    """
    Make an authenticated request to the CondoWeb API.

    Args:
        credentials: Token and identifiers for the association
        api_path: API path below /api/v1 (e.g., '/financials/get-all-accounts')
        method: HTTP method
        params: Optional query parameters
        data: Optional form fields, sent form-encoded

    Returns:
        Parsed JSON response

    Raises:
        CondoWebAPIError: If the API answers with a non-200 status
    """
    url = f"{credentials.api_base}{api_path}"

    logger.debug(f"{method} {url}")
    response = requests.request(
        method,
        url,
        headers=build_headers(credentials),
        params=params,
        data=data,
    )

    if response.status_code != 200:
        raise CondoWebAPIError(api_path, response.status_code, response.text)

    return response.json()


# ============================================================================
# Data Fetching Functions
# ============================================================================
#
# Each function takes a `fetch` callable with the signature of
# condoweb_api_request minus the credentials argument, so callers can bind the
# credentials once (functools.partial) or substitute a fake in tests.

def fetch_financial_years(fetch) -> dict:
    """Fetch the association's financial years."""
    return fetch("/financials/get-financial-years")


def fetch_balance_budgets(fetch, year_short_id: str) -> dict:
    """
    Fetch the balance budget rows of one financial year.

    Args:
        fetch: Bound API request callable
        year_short_id: Financial year short id ('nomAbrege')

    Returns:
        Balance budget response as dict
    """
    return fetch(f"/financials/get-balance-budgets/{year_short_id}")


def fetch_payable_balances(fetch) -> dict:
    """Fetch the current payable balances snapshot."""
    return fetch("/financials/get-payable-balances")


def fetch_receivable_balances(fetch) -> dict:
    """Fetch the current receivable balances snapshot."""
    return fetch("/financials/get-receivable-balances")


def fetch_all_accounts(fetch) -> dict:
    """Fetch every ledger account of the association."""
    return fetch("/financials/get-all-accounts")


def fetch_account_financial_years(fetch, account_number) -> dict:
    """Fetch the financial years in which one account has data."""
    return fetch(f"/financials/get-financial-years/{account_number}/")


def fetch_account_statement(fetch, account_number, year_short_id: str, association_id: str) -> dict:
    """
    Fetch the statement of one account for one financial year.

    Args:
        fetch: Bound API request callable
        account_number: Account number from get-all-accounts
        year_short_id: Financial year short id ('nomAbrege')
        association_id: Association id, repeated as a query parameter

    Returns:
        Account statement response as dict
    """
    return fetch(
        f"/financials/get-account-statement/{quote(str(account_number), safe='')}",
        params={
            "isNextYear": "false",
            "associationId": association_id,
            "shortenedName": year_short_id,
        },
    )


def fetch_transaction_data(fetch, transaction_number, association_id: str) -> dict:
    """
    Fetch the detail records of one transaction.

    The endpoint is a form POST; the account number is not used by the service
    for lookups and a constant placeholder is sent.

    Args:
        fetch: Bound API request callable
        transaction_number: Transaction number from an account statement
        association_id: Association id

    Returns:
        Transaction detail response as dict
    """
    return fetch(
        "/financials/get-account-statement-transaction-data",
        method="POST",
        data={
            "transactionNumber": str(transaction_number),
            "accountNumber": TRANSACTION_DETAIL_ACCOUNT_NUMBER,
            "associationId": association_id,
        },
    )


# ============================================================================
# Cache Keys
# ============================================================================
#
# Keys are relative paths below the cache root. Re-runs must land on the same
# keys, so these are part of the on-disk contract.

FINANCIALS_PREFIX = "financials"
FINANCIAL_YEARS_KEY = f"{FINANCIALS_PREFIX}/get-financial-years.json"
PAYABLE_BALANCES_KEY = f"{FINANCIALS_PREFIX}/get-payable-balances.json"
RECEIVABLE_BALANCES_KEY = f"{FINANCIALS_PREFIX}/get-receivable-balances.json"
ALL_ACCOUNTS_KEY = f"{FINANCIALS_PREFIX}/get-all-accounts.json"
BALANCE_BUDGETS_PREFIX = f"{FINANCIALS_PREFIX}/get-balance-budgets"
ACCOUNT_STATEMENTS_PREFIX = f"{FINANCIALS_PREFIX}/get-account-statements"
TRANSACTION_DATA_PREFIX = f"{FINANCIALS_PREFIX}/get-account-statement-transaction-data"
ACCOUNT_FINANCIAL_YEARS_FILENAME = "financial-years.json"


def key_segment(value) -> str:
    """
    Render an upstream value as a single path segment.

    Percent-encoding keeps distinct values on distinct keys ('2023/2024' and
    '2023-2024' never collide) and leaves no separator in the segment.
    """
    segment = quote(str(value).strip(), safe="")
    if segment in ("", ".", ".."):
        raise ValueError(f"Cannot use {value!r} in a cache key")
    return segment


def balance_budget_key(year_label: str) -> str:
    """Key of a balance budget, named after the year's display label."""
    return f"{BALANCE_BUDGETS_PREFIX}/{key_segment(year_label)}.json"


def account_financial_years_key(account_number) -> str:
    return f"{ACCOUNT_STATEMENTS_PREFIX}/{key_segment(account_number)}/{ACCOUNT_FINANCIAL_YEARS_FILENAME}"


def account_statement_key(account_number, year_short_id: str) -> str:
    return f"{ACCOUNT_STATEMENTS_PREFIX}/{key_segment(account_number)}/{key_segment(year_short_id)}.json"


def transaction_data_key(transaction_number) -> str:
    return f"{TRANSACTION_DATA_PREFIX}/{key_segment(transaction_number)}.json"


# ============================================================================
# Payload Helpers
# ============================================================================

def payload_records(payload, key: str = "") -> list:
    """
    Return the record list wrapped in an upstream payload's 'data' member.

    Args:
        payload: Parsed upstream response
        key: Cache key, used in the error message

    Returns:
        List of records

    Raises:
        ValueError: If the payload has no 'data' list or a record is not an object
    """
    records = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(records, list):
        raise ValueError(f"{key or 'payload'} has no 'data' list")
    if not all(isinstance(record, dict) for record in records):
        raise ValueError(f"{key or 'payload'} has non-object records")
    return records


def find_current_year(financial_years: list) -> Optional[dict]:
    """Return the financial year flagged isCurrent, or None."""
    current = [year for year in financial_years if year.get("isCurrent")]
    if len(current) > 1:
        logger.warning(
            f"{len(current)} financial years are flagged current, using {current[0].get('nomAbrege')}"
        )
    return current[0] if current else None
