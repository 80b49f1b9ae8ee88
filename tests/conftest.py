"""Shared fixtures: a small association and an in-memory CondoWeb API."""

from __future__ import annotations

import copy

import pytest

from condoweb_cache import JsonCache
from condoweb_core import CondoWebAPIError

ASSOCIATION_ID = "assoc-1"

FINANCIAL_YEARS = {
    "data": [
        {"nomAbrege": "FY23", "displayYears": "2023-2024", "isCurrent": False},
        {"nomAbrege": "FY24", "displayYears": "2024-2025", "isCurrent": True},
    ]
}

ALL_ACCOUNTS = {
    "data": [
        {"accountNumber": 7, "accountType": 4, "name": "Condo fees", "unitNumber": "  12B  "},
        {"accountNumber": 9, "accountType": 0, "name": "Operating bank"},
    ]
}

ACCOUNT_YEARS = {
    7: {"data": [
        {"nomAbrege": "FY23", "userHasData": True},
        {"nomAbrege": "FY24", "userHasData": True},
    ]},
    9: {"data": [
        {"nomAbrege": "FY23", "userHasData": False},
        {"nomAbrege": "FY24", "userHasData": True},
    ]},
}

STATEMENTS = {
    ("7", "FY23"): {"data": [{
        "accountNumber": 7, "accountType": 4, "balance": 100, "address": "1 Old Street",
        "transactions": [
            {"transactionNumber": 42, "transactionDate": "2023-06-01", "amount": 10, "refusedData": None},
            {"transactionNumber": 43, "transactionDate": "2023-07-01", "amount": 20, "refusedData": None},
        ],
    }]},
    ("7", "FY24"): {"data": [{
        "accountNumber": 7, "accountType": 4, "balance": 200, "address": "2 New Street",
        "transactions": [
            {"transactionNumber": 44, "transactionDate": "2024-06-01", "amount": 30, "refusedData": None},
        ],
    }]},
    ("9", "FY24"): {"data": [{
        "accountNumber": 9, "accountType": 0, "balance": 5000, "address": "",
        "transactions": [
            {"transactionNumber": 42, "transactionDate": "2023-06-01", "amount": -10, "refusedData": None},
        ],
    }]},
}

TRANSACTION_DATA = {
    "42": {"data": [{"transactionNumber": 42, "transactionDate": "2023-06-01", "description": "Fee"}]},
    "43": {"data": [{"transactionNumber": 43, "transactionDate": "2023-07-01", "description": "Fee"}]},
    "44": {"data": [{"transactionNumber": 44, "transactionDate": "2024-06-01", "description": "Fee"}]},
}

RESOURCES = {
    "/financials/get-financial-years": FINANCIAL_YEARS,
    "/financials/get-balance-budgets/FY23": {"data": [
        {"accountNumber": 7, "accountType": 4, "amount": 1000},
    ]},
    "/financials/get-balance-budgets/FY24": {"data": [
        {"accountNumber": 7, "accountType": 4, "amount": 1100},
    ]},
    "/financials/get-payable-balances": {"data": [
        {"accountNumber": 300, "accountType": 5, "unitNumber": None, "balance": 12},
    ]},
    "/financials/get-receivable-balances": {"data": [
        {"accountNumber": 400, "accountType": 7, "unitNumber": " 3 ", "balance": 34},
    ]},
    "/financials/get-all-accounts": ALL_ACCOUNTS,
    "/financials/get-financial-years/7/": ACCOUNT_YEARS[7],
    "/financials/get-financial-years/9/": ACCOUNT_YEARS[9],
}

# Every resource of the association above
RESOURCE_COUNT = len(RESOURCES) + len(STATEMENTS) + len(TRANSACTION_DATA)


class FakeCondoWeb:
    """Callable with the signature of a bound condoweb_api_request."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def __call__(self, api_path, method="GET", params=None, data=None):
        self.calls.append({"path": api_path, "method": method, "params": params, "data": data})
        if self.fail_on and self.fail_on(api_path, method, params, data):
            raise CondoWebAPIError(api_path, 500, "Internal Server Error")
        if method == "POST":
            return copy.deepcopy(TRANSACTION_DATA[data["transactionNumber"]])
        if params and "shortenedName" in params:
            account_number = api_path.rsplit("/", 1)[1]
            return copy.deepcopy(STATEMENTS[(account_number, params["shortenedName"])])
        return copy.deepcopy(RESOURCES[api_path])

    def posts(self):
        return [call["data"]["transactionNumber"] for call in self.calls if call["method"] == "POST"]

    def statements(self):
        return [
            (call["path"].rsplit("/", 1)[1], call["params"]["shortenedName"])
            for call in self.calls
            if call["params"] and "shortenedName" in call["params"]
        ]


@pytest.fixture
def cache(tmp_path):
    return JsonCache(tmp_path / "data")


@pytest.fixture
def api():
    return FakeCondoWeb()


def snapshot(root):
    """Map every file below root to its bytes."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }
