#!/usr/bin/env python3
"""
CondoWeb Financials Scrape CLI

Downloads every financials resource of an association into the local JSON
cache. Resources already in the cache are never downloaded again, so an
interrupted run can simply be restarted.

Usage:
    python condoweb_scrape.py --token TOKEN --manager-slug SLUG \\
        --manager-id ID --association-id ID     Download missing resources
    python condoweb_scrape.py ... --verbose     One line per resource instead of dots
    python condoweb_scrape.py ... --data-dir D  Cache directory (default: data)
"""

from __future__ import annotations

import argparse
import functools
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path

from condoweb_cache import JsonCache, download_if_missing
from condoweb_core import (
    ALL_ACCOUNTS_KEY,
    FINANCIAL_YEARS_KEY,
    PAYABLE_BALANCES_KEY,
    RECEIVABLE_BALANCES_KEY,
    CondoWebAPIError,
    Credentials,
    account_financial_years_key,
    account_statement_key,
    balance_budget_key,
    condoweb_api_request,
    fetch_account_financial_years,
    fetch_account_statement,
    fetch_all_accounts,
    fetch_balance_budgets,
    fetch_financial_years,
    fetch_payable_balances,
    fetch_receivable_balances,
    fetch_transaction_data,
    payload_records,
    transaction_data_key,
)

logger = logging.getLogger(__name__)

# Paths
DATA_DIR = Path("data")

# Pause after each statement / transaction download to go easy on the service
REQUEST_DELAY_SECONDS = 0.3


# ============================================================================
# Progress Reporting
# ============================================================================

class Progress:
    """Prints a dot per resource, or one line per resource when verbose."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._dots = 0

    def resource(self, key: str, fetched: bool) -> None:
        if self.verbose:
            print(f"{key} downloaded" if fetched else f"{key} already cached, skipping")
        else:
            print(".", end="", flush=True)
            self._dots += 1

    def counter(self, done: int, total: int) -> None:
        if self.verbose:
            print(f"Progress: {done}/{total}")

    def note(self, message: str) -> None:
        if self.verbose:
            print(message)

    def finish(self) -> None:
        if self._dots:
            print()
            self._dots = 0


# ============================================================================
# Acquisition Pipeline
# ============================================================================

@dataclass
class AcquireResult:
    """Counters of a scrape run.

    Attributes:
        fetched: Resources downloaded from the API during this run.
        cached: Resources served from the cache.
        statements: Account statements visited.
        transactions: Unique transaction ids visited.
    """

    fetched: int = 0
    cached: int = 0
    statements: int = 0
    transactions: int = 0


class Acquirer:
    """
    Walks the financials resource tree in dependency order.

    Each stage receives what the previous stages returned, because the keys of
    the next resources (years, account numbers, transaction numbers) are only
    known once their parents are loaded.
    """

    def __init__(self, cache: JsonCache, fetch, association_id: str,
                 delay: float = REQUEST_DELAY_SECONDS, sleep=time.sleep, progress: Progress = None):
        """
        Args:
            cache: Cache receiving every downloaded resource
            fetch: API request callable with credentials already bound
            association_id: Association id sent with statement and detail requests
            delay: Seconds to sleep after each throttled download
            sleep: Sleep function
            progress: Progress reporter (silent dots if omitted)
        """
        self.cache = cache
        self.fetch = fetch
        self.association_id = association_id
        self.delay = delay
        self.sleep = sleep
        self.progress = progress or Progress()
        self.result = AcquireResult()

    def _load(self, key: str, on_miss, throttle: bool = False):
        payload, fetched = download_if_missing(self.cache, key, on_miss)
        if fetched:
            self.result.fetched += 1
            if throttle and self.delay > 0:
                self.sleep(self.delay)
        else:
            self.result.cached += 1
        self.progress.resource(key, fetched)
        return payload

    def run(self) -> AcquireResult:
        """Run every stage in order and return the run counters."""
        financial_years = self.load_financial_years()
        self.load_balance_budgets(financial_years)
        self.load_balances()
        accounts = self.load_all_accounts()
        account_years = self.load_account_financial_years(accounts)
        statements = self.load_account_statements(accounts, account_years)
        self.load_transaction_data(statements)
        self.progress.finish()
        return self.result

    def load_financial_years(self) -> list:
        payload = self._load(FINANCIAL_YEARS_KEY, lambda: fetch_financial_years(self.fetch))
        return payload_records(payload, FINANCIAL_YEARS_KEY)

    def load_balance_budgets(self, financial_years: list) -> None:
        """Budgets are stored under the year's display label, requested by short id."""
        for year in financial_years:
            self._load(
                balance_budget_key(year["displayYears"]),
                lambda: fetch_balance_budgets(self.fetch, year["nomAbrege"]),
            )

    def load_balances(self) -> None:
        self._load(PAYABLE_BALANCES_KEY, lambda: fetch_payable_balances(self.fetch))
        self._load(RECEIVABLE_BALANCES_KEY, lambda: fetch_receivable_balances(self.fetch))

    def load_all_accounts(self) -> list:
        payload = self._load(ALL_ACCOUNTS_KEY, lambda: fetch_all_accounts(self.fetch))
        return payload_records(payload, ALL_ACCOUNTS_KEY)

    def load_account_financial_years(self, accounts: list) -> dict:
        """Return the account-scoped financial years, by account number."""
        account_years = {}
        for account in accounts:
            account_number = account["accountNumber"]
            key = account_financial_years_key(account_number)
            payload = self._load(
                key,
                lambda: fetch_account_financial_years(self.fetch, account_number),
            )
            account_years[account_number] = payload_records(payload, key)
        return account_years

    def load_account_statements(self, accounts: list, account_years: dict) -> list:
        """
        Download one statement per (account, year) pair with data.

        Returns:
            List of statement payloads, in fetch-set order
        """
        combinations = [
            (account["accountNumber"], year["nomAbrege"])
            for account in accounts
            for year in account_years.get(account["accountNumber"], [])
            if year.get("userHasData")
        ]
        self.progress.note(f"{len(combinations)} account statements to load")

        statements = []
        for done, (account_number, year_short_id) in enumerate(combinations, start=1):
            payload = self._load(
                account_statement_key(account_number, year_short_id),
                lambda: fetch_account_statement(
                    self.fetch, account_number, year_short_id, self.association_id
                ),
                throttle=True,
            )
            statements.append(payload)
            self.result.statements += 1
            self.progress.counter(done, len(combinations))
        return statements

    def load_transaction_data(self, statements: list) -> list:
        """
        Download the detail of every transaction referenced by a statement.

        A transaction shows up in the statement of each account it touches, so
        ids are deduplicated before any request is made.
        """
        transaction_ids = unique_transaction_ids(statements)
        self.progress.note(f"{len(transaction_ids)} unique transaction ids found")

        details = []
        for done, transaction_number in enumerate(transaction_ids, start=1):
            payload = self._load(
                transaction_data_key(transaction_number),
                lambda: fetch_transaction_data(self.fetch, transaction_number, self.association_id),
                throttle=True,
            )
            details.append(payload)
            self.result.transactions += 1
            self.progress.counter(done, len(transaction_ids))
        return details


def unique_transaction_ids(statements: list) -> list:
    """
    Return every transactionNumber found in the statements, first-seen order.

    Raises:
        ValueError: If a statement or one of its transactions is not an object,
            or a statement's transactions are not a list
    """
    ids = {}
    for payload in statements:
        for statement in payload_records(payload, "account statement"):
            transactions = statement.get("transactions") or []
            if not isinstance(transactions, list):
                raise ValueError(f"account statement {statement.get('accountNumber')} has malformed transactions")
            for transaction in transactions:
                if not isinstance(transaction, dict) or transaction.get("transactionNumber") is None:
                    raise ValueError(f"account statement {statement.get('accountNumber')} has malformed transactions")
                ids.setdefault(transaction["transactionNumber"], None)
    return list(ids)


def acquire(cache: JsonCache, fetch, association_id: str, **kwargs) -> AcquireResult:
    """Download every missing financials resource into the cache."""
    return Acquirer(cache, fetch, association_id, **kwargs).run()


# ============================================================================
# Commands
# ============================================================================

REQUIRED_FLAGS = ("token", "manager_slug", "manager_id", "association_id")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CondoWeb Financials Scrape CLI")
    parser.add_argument("--token", required=True,
                        help="Session token copied from the CondoWeb web app")
    parser.add_argument("--manager-slug", required=True,
                        help="Property manager subdomain, as in <slug>.condoweb.app")
    parser.add_argument("--manager-id", required=True,
                        help="Property manager id")
    parser.add_argument("--association-id", required=True,
                        help="Association id")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR,
                        help=f"Cache directory (default: {DATA_DIR})")
    parser.add_argument("--delay", type=float, default=REQUEST_DELAY_SECONDS,
                        help=f"Seconds to wait after each statement or transaction download "
                             f"(default: {REQUEST_DELAY_SECONDS})")
    parser.add_argument("--verbose", action="store_true",
                        help="Print one line per resource instead of dots")

    args = parser.parse_args(argv)

    for name in REQUIRED_FLAGS:
        if not getattr(args, name).strip():
            parser.error(f"--{name.replace('_', '-')} is required")
    if args.delay < 0:
        parser.error("--delay must not be negative")

    return args


def main(argv=None):
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    credentials = Credentials(
        token=args.token,
        manager_slug=args.manager_slug,
        manager_id=args.manager_id,
        association_id=args.association_id,
    )
    cache = JsonCache(args.data_dir)
    progress = Progress(verbose=args.verbose)

    try:
        result = acquire(
            cache,
            functools.partial(condoweb_api_request, credentials),
            credentials.association_id,
            delay=args.delay,
            progress=progress,
        )
    except CondoWebAPIError as e:
        progress.finish()
        print(f"API Error {e.status_code} for {e.api_path}: {e.body}", file=sys.stderr)
        print("Resources downloaded so far are kept; rerun to resume.", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        progress.finish()
        print(f"Error: unexpected response: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"\n--- Summary ---")
    print(f"Downloaded:   {result.fetched}")
    print(f"From cache:   {result.cached}")
    print(f"Statements:   {result.statements}")
    print(f"Transactions: {result.transactions}")
    print(f"\nCache written to {args.data_dir}/")


if __name__ == "__main__":
    main()
