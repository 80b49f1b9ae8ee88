#!/usr/bin/env python3
"""
CondoWeb Financials Tabulate CLI

Turns the JSON cache filled by condoweb_scrape.py into CSV tables. Works
offline: only the cache is read.

Usage:
    python condoweb_tabulate.py                 Read data/, write csv/
    python condoweb_tabulate.py --data-dir D    Read another cache directory
    python condoweb_tabulate.py --csv-dir D     Write tables somewhere else
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import pandas as pd

from condoweb_cache import JsonCache
from condoweb_core import (
    ACCOUNT_FINANCIAL_YEARS_FILENAME,
    ACCOUNT_STATEMENTS_PREFIX,
    ALL_ACCOUNTS_KEY,
    BALANCE_BUDGETS_PREFIX,
    FINANCIAL_YEARS_KEY,
    PAYABLE_BALANCES_KEY,
    RECEIVABLE_BALANCES_KEY,
    TRANSACTION_DATA_PREFIX,
    ResourceNotCachedError,
    UnknownAccountTypeError,
    account_type_name,
    find_current_year,
    key_segment,
    payload_records,
)

logger = logging.getLogger(__name__)

# Paths
DATA_DIR = Path("data")
CSV_DIR = Path("csv")

ANOMALIES_TABLE = "anomalies"

# Internal transaction fields left out of the account-statements table
EXCLUDED_TRANSACTION_FIELDS = ("refusedData",)


@dataclass
class TabulationResult:
    """Tables built from the cache.

    Attributes:
        tables: Rows per output table name, in write order.
        anomalies: Data integrity issues found while building the tables.
    """

    tables: dict = field(default_factory=dict)
    anomalies: list = field(default_factory=list)

    def report(self, source: str, message: str) -> None:
        logger.warning(f"{source}: {message}")
        self.anomalies.append({"source": source, "message": message})


@dataclass
class AccountTimeline:
    """Everything the statements say about one account, across all years."""

    account_type: object
    balance: object = 0
    address: object = ""
    transactions: list = field(default_factory=list)


# ============================================================================
# Cache Loading
# ============================================================================

def load_required(cache: JsonCache, key: str) -> list:
    """Load the records of a singleton resource the tables cannot do without."""
    if not cache.exists(key):
        raise ResourceNotCachedError(key)
    return payload_records(cache.read_json(key), key)


def load_optional(cache: JsonCache, key: str, result: TabulationResult):
    """
    Load the records of one per-year/per-account/per-transaction resource.

    A malformed file is reported and skipped so that none of its rows reach
    any table.

    Returns:
        List of record dicts, or None if the file is unusable
    """
    try:
        records = payload_records(cache.read_json(key), key)
    except (OSError, ValueError) as e:
        result.report(key, f"skipped unreadable file: {e}")
        return None
    return records


def statement_keys(cache: JsonCache) -> list:
    """Keys of every cached account statement, without the per-account year lists."""
    return [
        key for key in cache.keys(ACCOUNT_STATEMENTS_PREFIX, "**/*.json")
        if PurePosixPath(key).name != ACCOUNT_FINANCIAL_YEARS_FILENAME
    ]


# ============================================================================
# Normalization Helpers
# ============================================================================

def type_name_for(record: dict, source: str, result: TabulationResult) -> str:
    """Join the account type name, reporting codes outside the enumeration."""
    try:
        return account_type_name(record.get("accountType"))
    except UnknownAccountTypeError as e:
        result.report(source, f"{e} (accountNumber {record.get('accountNumber')!r})")
        return ""


def trim_unit_number(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _number_sort_key(value):
    # Account numbers are ints upstream; keep a total order if one is not
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value, "")
    return (1, 0, str(value))


# ============================================================================
# Account Statements
# ============================================================================

def _is_valid_statement(statement: dict) -> bool:
    transactions = statement.get("transactions", [])
    return (
        statement.get("accountNumber") is not None
        and isinstance(transactions, list)
        and all(isinstance(transaction, dict) for transaction in transactions)
    )


def accumulate_statements(cache: JsonCache, current_year, result: TabulationResult) -> dict:
    """
    Merge every cached statement into one timeline per account.

    Transactions from all years are appended as they come, duplicates
    included. Balance, address and type are taken only from the statement of
    the current financial year.

    Args:
        cache: Cache to read
        current_year: Financial year flagged isCurrent, or None
        result: Collects anomalies

    Returns:
        Dict mapping account number to AccountTimeline
    """
    current_stem = None
    if current_year and current_year.get("nomAbrege") is not None:
        current_stem = key_segment(current_year["nomAbrege"])
    timelines = {}

    for key in statement_keys(cache):
        records = load_optional(cache, key, result)
        if records is None:
            continue
        if not all(_is_valid_statement(statement) for statement in records):
            result.report(key, "skipped file with a malformed statement")
            continue

        is_current_year = PurePosixPath(key).stem == current_stem
        for statement in records:
            timeline = timelines.setdefault(
                statement["accountNumber"],
                AccountTimeline(account_type=statement.get("accountType")),
            )
            timeline.transactions.extend(statement.get("transactions", []))

            if is_current_year:
                timeline.balance = statement.get("balance", 0)
                timeline.address = statement.get("address", "")
                timeline.account_type = statement.get("accountType")

    return timelines


def tabulate_account_statements(timelines: dict, result: TabulationResult) -> list:
    """
    Flatten the timelines into one row per transaction.

    Rows are sorted by transaction date, then account number. Dates come
    pre-formatted as sortable strings.
    """
    rows = []
    for account_number, timeline in timelines.items():
        type_name = type_name_for(
            {"accountType": timeline.account_type, "accountNumber": account_number},
            "account-statements",
            result,
        )
        for transaction in timeline.transactions:
            row = {
                "accountNumber": account_number,
                "accountType": timeline.account_type,
                "accountTypeName": type_name,
            }
            row.update(
                (name, value) for name, value in transaction.items()
                if name not in EXCLUDED_TRANSACTION_FIELDS
            )
            rows.append(row)

    rows.sort(key=lambda row: (str(row.get("transactionDate") or ""),
                               _number_sort_key(row["accountNumber"])))
    return rows


# ============================================================================
# Accounts and Balances
# ============================================================================

def tabulate_accounts(accounts: list, timelines: dict, result: TabulationResult) -> list:
    """Join every account with its current balance and address."""
    rows = []
    for account in accounts:
        timeline = timelines.get(account.get("accountNumber"))
        row = {"accountTypeName": type_name_for(account, ALL_ACCOUNTS_KEY, result)}
        row.update(account)
        row["unitNumber"] = trim_unit_number(account.get("unitNumber"))
        row["balance"] = timeline.balance if timeline else 0
        row["address"] = timeline.address if timeline else ""
        rows.append(row)
    return rows


def check_statement_accounts(accounts: list, timelines: dict, result: TabulationResult) -> None:
    """Report statements whose account is not in the account list."""
    known = {account.get("accountNumber") for account in accounts}
    for account_number in timelines:
        if account_number not in known:
            result.report(
                ACCOUNT_STATEMENTS_PREFIX,
                f"statement for unknown account {account_number!r}",
            )


def tabulate_balances(records: list, source: str, result: TabulationResult) -> list:
    rows = []
    for record in records:
        row = {"accountTypeName": type_name_for(record, source, result)}
        row.update(record)
        row["unitNumber"] = trim_unit_number(record.get("unitNumber"))
        rows.append(row)
    return rows


# ============================================================================
# Budgets and Transactions
# ============================================================================

def tabulate_budgets(cache: JsonCache, result: TabulationResult) -> dict:
    """Return one table per cached balance budget, named after its year."""
    tables = {}
    for key in cache.keys(BALANCE_BUDGETS_PREFIX):
        records = load_optional(cache, key, result)
        if records is None:
            continue
        rows = []
        for record in records:
            row = {"accountTypeName": type_name_for(record, key, result)}
            row.update(record)
            rows.append(row)
        tables[f"annual-budgets/{PurePosixPath(key).stem}"] = rows
    return tables


def tabulate_transactions(cache: JsonCache, result: TabulationResult) -> list:
    """Union of every transaction detail record, sorted by transaction date."""
    rows = []
    for key in cache.keys(TRANSACTION_DATA_PREFIX):
        records = load_optional(cache, key, result)
        if records is not None:
            rows.extend(records)
    rows.sort(key=lambda row: str(row.get("transactionDate") or ""))
    return rows


# ============================================================================
# Aggregation
# ============================================================================

def aggregate(cache: JsonCache) -> TabulationResult:
    """
    Build every export table from the cache.

    Args:
        cache: Cache filled by condoweb_scrape.py

    Returns:
        TabulationResult with tables in write order and any anomalies

    Raises:
        ResourceNotCachedError: If a singleton resource was never downloaded
    """
    result = TabulationResult()

    financial_years = load_required(cache, FINANCIAL_YEARS_KEY)
    accounts = load_required(cache, ALL_ACCOUNTS_KEY)
    payable_balances = load_required(cache, PAYABLE_BALANCES_KEY)
    receivable_balances = load_required(cache, RECEIVABLE_BALANCES_KEY)

    current_year = find_current_year(financial_years)
    if current_year is None:
        logger.warning("No current financial year found, balances default to 0")

    timelines = accumulate_statements(cache, current_year, result)
    check_statement_accounts(accounts, timelines, result)

    result.tables["financial-years"] = list(financial_years)
    result.tables["account-statements"] = tabulate_account_statements(timelines, result)
    result.tables["accounts"] = tabulate_accounts(accounts, timelines, result)
    result.tables["payable-balances"] = tabulate_balances(
        payable_balances, PAYABLE_BALANCES_KEY, result
    )
    result.tables["receivable-balances"] = tabulate_balances(
        receivable_balances, RECEIVABLE_BALANCES_KEY, result
    )
    result.tables.update(tabulate_budgets(cache, result))
    result.tables["transactions"] = tabulate_transactions(cache, result)

    return result


# ============================================================================
# CSV Writing
# ============================================================================

def _cell(value):
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    # Nested upstream values are kept as JSON rather than Python reprs
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def to_table(rows: list) -> bytes:
    """
    Serialize records to CSV.

    Column headers are the record keys in order of first appearance; row
    order is kept.
    """
    if not rows:
        return b""
    frame = pd.DataFrame(
        [{name: _cell(value) for name, value in row.items()} for row in rows],
        dtype=object,
    )
    return frame.to_csv(index=False, lineterminator="\n").encode("utf-8")


def write_tables(result: TabulationResult, csv_dir: Path) -> list:
    """
    Write each table to its own CSV file.

    Files are written one after the other; if one fails, the files already
    written stay valid.

    Returns:
        List of written paths
    """
    tables = dict(result.tables)
    if result.anomalies:
        tables[ANOMALIES_TABLE] = result.anomalies

    written = []
    for name, rows in tables.items():
        path = Path(csv_dir) / f"{name}.csv"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(to_table(rows))
        logger.info(f"Written {len(rows)} rows to {path}")
        written.append(path)
    return written


# ============================================================================
# Commands
# ============================================================================

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CondoWeb Financials Tabulate CLI")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR,
                        help=f"Cache directory filled by condoweb_scrape.py (default: {DATA_DIR})")
    parser.add_argument("--csv-dir", type=Path, default=CSV_DIR,
                        help=f"Output directory for CSV tables (default: {CSV_DIR})")
    parser.add_argument("--verbose", action="store_true",
                        help="Log every table written")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    cache = JsonCache(args.data_dir)
    try:
        result = aggregate(cache)
    except ResourceNotCachedError as e:
        print(f"Error: {e.key} not found in {args.data_dir}/", file=sys.stderr)
        print("Run condoweb_scrape.py first.", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    written = write_tables(result, args.csv_dir)
    print(f"Written {len(written)} tables to {args.csv_dir}/")

    if result.anomalies:
        print(f"\n{len(result.anomalies)} data integrity issue(s), "
              f"see {args.csv_dir / (ANOMALIES_TABLE + '.csv')}:")
        for anomaly in result.anomalies[:10]:
            print(f"  {anomaly['source']}: {anomaly['message']}")
        if len(result.anomalies) > 10:
            print(f"  ... and {len(result.anomalies) - 10} more")


if __name__ == "__main__":
    main()
