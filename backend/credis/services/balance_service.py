# Overview: Service-layer operations for customer balances; fold, atomic upsert, rebuild, verify.

"""
Balance Aggregator

CustomerBalance is a materialized cache of the fold over a pair's ledger
entries. Invariants:

- Exactly one row per (customer_id, store_id); enforced by
  uq_customer_balances_pair and by writing through an
  INSERT ... ON CONFLICT (customer_id, store_id) DO UPDATE.
- Increments are SQL expressions evaluated by the database
  (total = total + excluded.total), never read-modify-write in Python.
  Same-pair writers serialize on that one row; different pairs touch
  different rows and never wait on each other. There is no process-level
  lock.
- apply_entry runs inside the caller's transaction, so the entry insert
  and the balance update commit or roll back together.
- Date columns keep the latest value seen, which is exactly what the fold
  computes; rebuild_balance is therefore a no-op on a healthy row and is
  idempotent on a damaged one.
- outstanding_balance_cents is never clamped; negative means the customer
  has paid more than they were given.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from flask import current_app
from sqlalchemy import case, select, union
from sqlalchemy.dialects import postgresql, sqlite

from ..errors import ConsistencyError, NotFoundError
from ..models import Customer, CustomerBalance, LedgerEntry, CREDIT_GIVEN, PAYMENT_RECEIVED
from .concurrency import lock_for_update, run_with_retry
from credis.time_utils import to_utc_z, utcnow


@dataclass
class BalanceTotals:
    """Result of folding a pair's ledger entries."""
    total_credit_given_cents: int = 0
    total_payments_received_cents: int = 0
    last_credit_date: datetime | None = None
    last_payment_date: datetime | None = None
    last_transaction_date: datetime | None = None
    transaction_count: int = 0

    @property
    def outstanding_balance_cents(self) -> int:
        return self.total_credit_given_cents - self.total_payments_received_cents

    def add(self, entry: LedgerEntry) -> None:
        date = entry.transaction_date
        if entry.transaction_type == CREDIT_GIVEN:
            self.total_credit_given_cents += entry.amount_cents
            self.last_credit_date = _later(self.last_credit_date, date)
        elif entry.transaction_type == PAYMENT_RECEIVED:
            self.total_payments_received_cents += entry.amount_cents
            self.last_payment_date = _later(self.last_payment_date, date)
        else:
            raise ValueError(f"Unknown transaction type {entry.transaction_type!r}")
        self.last_transaction_date = _later(self.last_transaction_date, date)
        self.transaction_count += 1

    def as_balance_fields(self) -> dict:
        return {
            "total_credit_given_cents": self.total_credit_given_cents,
            "total_payments_received_cents": self.total_payments_received_cents,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "last_credit_date": self.last_credit_date,
            "last_payment_date": self.last_payment_date,
            "last_transaction_date": self.last_transaction_date,
        }


def _later(current: datetime | None, candidate: datetime | None) -> datetime | None:
    if current is None:
        return candidate
    if candidate is None:
        return current
    return candidate if candidate > current else current


def fold_entries(entries: Iterable[LedgerEntry]) -> BalanceTotals:
    """Pure fold of ledger entries into balance totals. Order does not matter."""
    totals = BalanceTotals()
    for entry in entries:
        totals.add(entry)
    return totals


def _entry_delta(entry: LedgerEntry) -> dict:
    """Column values one entry contributes to its pair's balance row."""
    is_credit = entry.transaction_type == CREDIT_GIVEN
    return {
        "total_credit_given_cents": entry.amount_cents if is_credit else 0,
        "total_payments_received_cents": 0 if is_credit else entry.amount_cents,
        "outstanding_balance_cents": entry.signed_amount_cents,
        "last_credit_date": entry.transaction_date if is_credit else None,
        "last_payment_date": None if is_credit else entry.transaction_date,
        "last_transaction_date": entry.transaction_date,
    }


def _dialect_insert(session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Balance upsert is not implemented for the {dialect!r} dialect")


def _latest(column, incoming):
    """SQL: the later of the stored and incoming datetimes, ignoring NULLs."""
    return case(
        (incoming.is_(None), column),
        (column.is_(None), incoming),
        (incoming > column, incoming),
        else_=column,
    )


def _pair_query(session, customer_id: int, store_id: int):
    return session.query(CustomerBalance).filter_by(customer_id=customer_id, store_id=store_id)


def _load(session, customer_id: int, store_id: int) -> CustomerBalance | None:
    # populate_existing: the row was just changed by a Core statement
    return _pair_query(session, customer_id, store_id).populate_existing().one_or_none()


def apply_entry(session, entry: LedgerEntry) -> CustomerBalance:
    """
    Fold one new entry into its pair's balance row with a single atomic upsert.

    Must be called in the same transaction as the entry insert. Does not commit.
    """
    table = CustomerBalance.__table__
    insert = _dialect_insert(session)

    stmt = insert(table).values(
        customer_id=entry.customer_id,
        store_id=entry.store_id,
        updated_at=utcnow(),
        **_entry_delta(entry),
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.customer_id, table.c.store_id],
        set_={
            "total_credit_given_cents": table.c.total_credit_given_cents + excluded.total_credit_given_cents,
            "total_payments_received_cents": (
                table.c.total_payments_received_cents + excluded.total_payments_received_cents
            ),
            "outstanding_balance_cents": table.c.outstanding_balance_cents + excluded.outstanding_balance_cents,
            "last_credit_date": _latest(table.c.last_credit_date, excluded.last_credit_date),
            "last_payment_date": _latest(table.c.last_payment_date, excluded.last_payment_date),
            "last_transaction_date": _latest(table.c.last_transaction_date, excluded.last_transaction_date),
            "updated_at": excluded.updated_at,
        },
    )
    session.execute(stmt)
    return _load(session, entry.customer_id, entry.store_id)


def _ensure_row(session, customer_id: int, store_id: int) -> None:
    table = CustomerBalance.__table__
    insert = _dialect_insert(session)
    stmt = insert(table).values(
        customer_id=customer_id,
        store_id=store_id,
        total_credit_given_cents=0,
        total_payments_received_cents=0,
        outstanding_balance_cents=0,
        updated_at=utcnow(),
    ).on_conflict_do_nothing(index_elements=[table.c.customer_id, table.c.store_id])
    session.execute(stmt)


def _require_pair(session, customer_id: int, store_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if customer is None or customer.store_id != store_id:
        raise NotFoundError("Customer not found in this store")
    return customer


def pair_entries(session, customer_id: int, store_id: int):
    return session.execute(
        select(LedgerEntry).where(
            LedgerEntry.customer_id == customer_id,
            LedgerEntry.store_id == store_id,
        )
    ).scalars()


def rebuild_balance(session, customer_id: int, store_id: int, *, commit: bool = True) -> CustomerBalance:
    """
    Recompute a pair's balance row from its full entry history and overwrite it.

    This is the authoritative repair path and is idempotent. The row is
    locked before the entries are read, so a concurrent apply_entry either
    lands before the scan (and is counted) or waits and increments the
    rebuilt value.

    commit=False runs inside the caller's unit of work (used by amend/delete).
    """
    def _rebuild():
        _require_pair(session, customer_id, store_id)
        _ensure_row(session, customer_id, store_id)
        balance = lock_for_update(_pair_query(session, customer_id, store_id)).populate_existing().one()

        totals = fold_entries(pair_entries(session, customer_id, store_id))
        for field, value in totals.as_balance_fields().items():
            setattr(balance, field, value)
        balance.updated_at = utcnow()
        session.flush()
        return balance

    if not commit:
        return _rebuild()

    def _op():
        try:
            balance = _rebuild()
            session.commit()
        except NotFoundError:
            session.rollback()
            raise
        return balance

    return run_with_retry(session, _op)


def get_balance(session, customer_id: int, store_id: int) -> CustomerBalance:
    """Current balance row of a pair. NotFoundError if the pair has never transacted."""
    balance = _pair_query(session, customer_id, store_id).one_or_none()
    if balance is None:
        raise NotFoundError("No balance for this customer at this store")
    return balance


def _serialize(fields: dict | None) -> dict | None:
    if fields is None:
        return None
    return {
        key: to_utc_z(value) if isinstance(value, datetime) else value
        for key, value in fields.items()
    }


def verify_balance(session, customer_id: int, store_id: int, *, repair: bool = False) -> CustomerBalance:
    """
    Compare a pair's balance row against the fold of its entries.

    Raises ConsistencyError on divergence, or with repair=True logs the
    divergence, rebuilds and returns the repaired row.
    """
    _require_pair(session, customer_id, store_id)
    balance = _pair_query(session, customer_id, store_id).populate_existing().one_or_none()
    totals = fold_entries(pair_entries(session, customer_id, store_id))

    if balance is None and totals.transaction_count == 0:
        raise NotFoundError("No balance for this customer at this store")

    expected = totals.as_balance_fields()
    stored = balance.totals() if balance is not None else None
    if stored == expected:
        return balance

    if not repair:
        raise ConsistencyError(
            "Balance does not match ledger",
            stored=_serialize(stored),
            expected=_serialize(expected),
        )

    current_app.logger.warning(
        "Repairing balance for customer_id=%s store_id=%s: stored=%s expected=%s",
        customer_id, store_id, _serialize(stored), _serialize(expected),
    )
    return rebuild_balance(session, customer_id, store_id)


def known_pairs(session) -> list[tuple[int, int]]:
    """Every (customer_id, store_id) that has entries or a balance row."""
    return [
        (customer_id, store_id)
        for customer_id, store_id in session.execute(
            union(
                select(LedgerEntry.customer_id, LedgerEntry.store_id),
                select(CustomerBalance.customer_id, CustomerBalance.store_id),
            )
        ).all()
    ]


def verify_all_balances(session, *, repair: bool = False) -> list[dict]:
    """
    Check every known pair.

    Returns one report dict per divergent pair. With repair=True each
    divergent pair is rebuilt as it is found.
    """
    report = []
    for customer_id, store_id in known_pairs(session):
        try:
            verify_balance(session, customer_id, store_id)
        except ConsistencyError as exc:
            item = {"customer_id": customer_id, "store_id": store_id, **exc.to_dict()}
            if repair:
                rebuild_balance(session, customer_id, store_id)
                item["repaired"] = True
            report.append(item)
        except NotFoundError:
            # Zero-total row with no entries, or an orphaned pair; nothing to fold
            continue
    return report
