"""Ledger engine applying balance-affecting events to company accounts."""

from __future__ import annotations

import csv
from collections import defaultdict
from dataclasses import replace
from decimal import Decimal
from io import StringIO
from typing import Dict, List, Optional, Tuple

from .exceptions import InsufficientFundsError, InvalidInputError
from .models import CompanyAccount, Transaction, TransactionKind, utc_now
from .money import ZERO, AmountLike, format_currency, parse_amount


def post(account: CompanyAccount, kind: TransactionKind, amount: Decimal) -> CompanyAccount:
    """Return ``account`` with the sign rule for ``kind`` applied to ``amount``."""

    if kind.is_credit:
        return replace(
            account,
            balance=account.balance + amount,
            total_revenue=account.total_revenue + amount,
            updated_at=utc_now(),
        )
    return replace(
        account,
        balance=account.balance - amount,
        total_expenses=account.total_expenses + amount,
        updated_at=utc_now(),
    )


class LedgerEngine:
    """Apply transactions to a :class:`CompanyAccount` without hidden state.

    ``apply`` is a pure function of its inputs: it returns the updated account
    together with the new :class:`Transaction` and never touches storage.
    Persisting both is the caller's job.

    Debits are allowed to take the balance below zero unless the engine was
    built with ``allow_overdraft=False``; purchases layer their own funds check
    on top of this.
    """

    __slots__ = ("allow_overdraft",)

    def __init__(self, *, allow_overdraft: bool = True) -> None:
        self.allow_overdraft = allow_overdraft

    def apply(
        self,
        account: CompanyAccount,
        kind: TransactionKind,
        amount: AmountLike,
        description: Optional[str] = None,
    ) -> Tuple[CompanyAccount, Transaction]:
        value = parse_amount(amount)
        kind = TransactionKind(kind)
        if not kind.is_credit and not self.allow_overdraft and account.balance < value:
            raise InsufficientFundsError(
                f"Company '{account.company_name}' has insufficient funds for {format_currency(value)}.",
                required=value,
                available=account.balance,
            )
        updated = post(account, kind, value)
        transaction = Transaction(
            company_id=account.id,
            kind=kind,
            amount=value,
            balance_after=updated.balance,
            description=description,
        )
        return updated, transaction


def parse_kind(raw: str | TransactionKind) -> TransactionKind:
    if isinstance(raw, TransactionKind):
        return raw
    try:
        return TransactionKind((raw or "").strip().lower())
    except ValueError as exc:
        choices = ", ".join(kind.value for kind in TransactionKind)
        raise InvalidInputError(f"Transaction type must be one of: {choices}.") from exc


def record_transaction(
    engine: LedgerEngine,
    account: CompanyAccount,
    kind: str | TransactionKind,
    amount: AmountLike,
    description: Optional[str] = None,
) -> Tuple[CompanyAccount, Transaction]:
    """Validate dashboard form input and apply it through ``engine``."""

    parsed_kind = parse_kind(kind)
    value = parse_amount(amount)
    note = (description or "").strip() or None
    return engine.apply(account, parsed_kind, value, note)


class TransactionLog:
    """Append-only record of every transaction, grouped per company."""

    def __init__(self) -> None:
        self._entries: Dict[str, List[Transaction]] = defaultdict(list)
        self._ids: set[str] = set()

    def append(self, transaction: Transaction) -> Transaction:
        if transaction.id in self._ids:
            raise ValueError(f"Transaction '{transaction.id}' has already been recorded.")
        self._ids.add(transaction.id)
        self._entries[transaction.company_id].append(transaction)
        return transaction

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._ids

    def for_company(self, company_id: str) -> Tuple[Transaction, ...]:
        return tuple(self._entries.get(company_id, ()))

    def recent(self, company_id: str, count: int = 10) -> Tuple[Transaction, ...]:
        """Return the newest ``count`` entries, most recent first."""

        if count < 0:
            raise ValueError("count must not be negative")
        entries = self._entries.get(company_id, [])
        if count == 0 or not entries:
            return tuple()
        return tuple(reversed(entries[-count:]))

    def totals(self, company_id: str) -> Tuple[Decimal, Decimal]:
        """Return ``(revenue, expenses)`` summed from the log."""

        revenue = ZERO
        expenses = ZERO
        for transaction in self._entries.get(company_id, ()):
            if transaction.kind.is_credit:
                revenue += transaction.amount
            else:
                expenses += transaction.amount
        return revenue, expenses

    def export_csv(self, company_id: str) -> str:
        buffer = StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["created_at", "type", "description", "amount", "balance"])
        for transaction in self._entries.get(company_id, ()):
            writer.writerow(
                [
                    transaction.created_at.isoformat(),
                    transaction.kind.value,
                    transaction.description or "",
                    f"{transaction.signed_amount:.2f}",
                    f"{transaction.balance_after:.2f}",
                ]
            )
        return buffer.getvalue()


def generate_statement(account: CompanyAccount, transactions: Tuple[Transaction, ...]) -> str:
    """Create a human-readable summary of a company and its newest entries."""

    lines = [
        f"Company: {account.company_name}",
        f"Current balance: {format_currency(account.balance)}",
        f"Total revenue: {format_currency(account.total_revenue)}",
        f"Total expenses: {format_currency(account.total_expenses)}",
        "",
        "Recent transactions:",
    ]
    if not transactions:
        lines.append("  (no transactions yet)")
    for transaction in transactions:
        sign = "+" if transaction.kind.is_credit else "-"
        lines.append(
            "  "
            f"[{transaction.created_at:%Y-%m-%d}] "
            f"{transaction.kind.value.title()}: {sign}{format_currency(transaction.amount)}"
            + (f" ({transaction.description})" if transaction.description else "")
        )
    return "\n".join(lines)


__all__ = ["LedgerEngine", "TransactionLog", "generate_statement", "parse_kind", "post", "record_transaction"]
