# Overview: Read-side projections over ledger entries and balances; never mutates.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator

from flask import current_app
from sqlalchemy import case, func, select

from ..errors import NotFoundError, ValidationError
from ..models import (
    Customer, CustomerBalance, LedgerEntry, Store,
    CREDIT_GIVEN, PAYMENT_RECEIVED, TRANSACTION_TYPES,
)
from .balance_service import fold_entries
from credis.time_utils import days_before, normalize_utc, to_utc_z, utcnow

MAX_RECENT_LIMIT = 100
MAX_DATE_RANGE = timedelta(days=365)
LIST_BATCH_SIZE = 200


@dataclass(frozen=True)
class TransactionFilter:
    """
    Criteria for list_transactions. Every field is optional; ranges are
    inclusive on both ends.
    """
    customer_id: int | None = None
    store_id: int | None = None
    transaction_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    min_amount_cents: int | None = None
    max_amount_cents: int | None = None
    ascending: bool = False
    limit: int | None = None


def _require_store(session, store_id: int) -> Store:
    store = session.get(Store, store_id)
    if store is None:
        raise NotFoundError("Store not found")
    return store


def _require_customer(session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    return customer


def validate_filter(session, filters: TransactionFilter) -> None:
    if filters.store_id is not None:
        _require_store(session, filters.store_id)
    if filters.customer_id is not None:
        customer = _require_customer(session, filters.customer_id)
        # Another store's customer reads the same as a missing one
        if filters.store_id is not None and customer.store_id != filters.store_id:
            raise NotFoundError("Customer not found")

    if filters.transaction_type is not None and filters.transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"transaction_type must be one of: {', '.join(TRANSACTION_TYPES)}")

    if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
        raise ValidationError("Start date must be before end date")

    if filters.min_amount_cents is not None and filters.min_amount_cents < 0:
        raise ValidationError("Minimum amount cannot be negative")
    if filters.max_amount_cents is not None and filters.max_amount_cents < 0:
        raise ValidationError("Maximum amount cannot be negative")
    if (
        filters.min_amount_cents is not None
        and filters.max_amount_cents is not None
        and filters.min_amount_cents > filters.max_amount_cents
    ):
        raise ValidationError("Minimum amount must be less than maximum amount")

    if filters.limit is not None and filters.limit <= 0:
        raise ValidationError("Limit must be greater than zero")


def _filtered_statement(filters: TransactionFilter):
    stmt = select(LedgerEntry)
    if filters.customer_id is not None:
        stmt = stmt.where(LedgerEntry.customer_id == filters.customer_id)
    if filters.store_id is not None:
        stmt = stmt.where(LedgerEntry.store_id == filters.store_id)
    if filters.transaction_type is not None:
        stmt = stmt.where(LedgerEntry.transaction_type == filters.transaction_type)
    if filters.start_date is not None:
        stmt = stmt.where(LedgerEntry.transaction_date >= filters.start_date)
    if filters.end_date is not None:
        stmt = stmt.where(LedgerEntry.transaction_date <= filters.end_date)
    if filters.min_amount_cents is not None:
        stmt = stmt.where(LedgerEntry.amount_cents >= filters.min_amount_cents)
    if filters.max_amount_cents is not None:
        stmt = stmt.where(LedgerEntry.amount_cents <= filters.max_amount_cents)

    if filters.ascending:
        stmt = stmt.order_by(LedgerEntry.transaction_date.asc(), LedgerEntry.id.asc())
    else:
        stmt = stmt.order_by(LedgerEntry.transaction_date.desc(), LedgerEntry.id.desc())
    if filters.limit is not None:
        stmt = stmt.limit(filters.limit)
    return stmt


def list_transactions(session, filters: TransactionFilter | None = None) -> Iterator[LedgerEntry]:
    """
    Lazily yield entries matching ``filters``, newest transaction_date first
    unless filters.ascending is set.

    Validation happens eagerly (before the first item is requested), so
    bad filters raise at call time rather than on iteration.
    """
    filters = filters or TransactionFilter()
    validate_filter(session, filters)
    stmt = _filtered_statement(filters).execution_options(yield_per=LIST_BATCH_SIZE)
    result = session.execute(stmt).scalars()

    def _iterate():
        yield from result

    return _iterate()


def customer_summary(session, customer_id: int, store_id: int | None = None) -> dict:
    """
    Totals folded straight from the entries. For a (customer, store) pair the
    numeric fields must equal the CustomerBalance row; a divergence is a bug.
    """
    customer = _require_customer(session, customer_id)
    if store_id is not None:
        _require_store(session, store_id)
        if customer.store_id != store_id:
            raise NotFoundError("Customer not found in this store")

    stmt = select(LedgerEntry).where(LedgerEntry.customer_id == customer_id)
    if store_id is not None:
        stmt = stmt.where(LedgerEntry.store_id == store_id)
    totals = fold_entries(session.execute(stmt).scalars())

    return {
        "customer_id": customer_id,
        "store_id": store_id,
        "total_credit_given_cents": totals.total_credit_given_cents,
        "total_payments_received_cents": totals.total_payments_received_cents,
        "outstanding_balance_cents": totals.outstanding_balance_cents,
        "transaction_count": totals.transaction_count,
        "last_credit_date": to_utc_z(totals.last_credit_date),
        "last_payment_date": to_utc_z(totals.last_payment_date),
        "last_transaction_date": to_utc_z(totals.last_transaction_date),
    }


def store_summary(session, store_id: int) -> dict:
    """Store-wide totals aggregated in SQL."""
    _require_store(session, store_id)

    credit_sum = func.coalesce(func.sum(
        case((LedgerEntry.transaction_type == CREDIT_GIVEN, LedgerEntry.amount_cents), else_=0)
    ), 0)
    payment_sum = func.coalesce(func.sum(
        case((LedgerEntry.transaction_type == PAYMENT_RECEIVED, LedgerEntry.amount_cents), else_=0)
    ), 0)
    row = session.execute(
        select(
            func.count(func.distinct(LedgerEntry.customer_id)),
            credit_sum,
            payment_sum,
            func.count(LedgerEntry.id),
        ).where(LedgerEntry.store_id == store_id)
    ).one()
    customers, credit_given, payments, count = row

    return {
        "store_id": store_id,
        "total_customers": customers,
        "total_credit_given_cents": int(credit_given),
        "total_payments_received_cents": int(payments),
        "total_outstanding_balance_cents": int(credit_given) - int(payments),
        "total_transactions": count,
    }


def recent_transactions(session, limit: int = 10, store_id: int | None = None) -> list[LedgerEntry]:
    if limit <= 0:
        raise ValidationError("Limit must be greater than zero")
    if limit > MAX_RECENT_LIMIT:
        raise ValidationError(f"Limit cannot exceed {MAX_RECENT_LIMIT}")
    return list(list_transactions(session, TransactionFilter(store_id=store_id, limit=limit)))


def transactions_by_date_range(session, start_date: datetime, end_date: datetime,
                               store_id: int | None = None) -> list[LedgerEntry]:
    if start_date is None or end_date is None:
        raise ValidationError("start_date and end_date are required")
    if start_date > end_date:
        raise ValidationError("Start date must be before end date")
    if end_date - start_date > MAX_DATE_RANGE:
        raise ValidationError("Date range cannot exceed 365 days")
    return list(list_transactions(
        session,
        TransactionFilter(store_id=store_id, start_date=start_date, end_date=end_date),
    ))


def _balances_with_customer(session, store_id: int):
    return (
        select(CustomerBalance, Customer)
        .join(Customer, Customer.id == CustomerBalance.customer_id)
        .where(CustomerBalance.store_id == store_id)
    )


def _balance_row(balance: CustomerBalance, customer: Customer) -> dict:
    data = balance.to_dict()
    data["customer_name"] = customer.name
    data["customer_phone"] = customer.phone
    return data


def customers_with_outstanding_balance(session, store_id: int, limit: int | None = None) -> list[dict]:
    """Customers owing money at a store, largest balance first."""
    _require_store(session, store_id)
    if limit is not None and limit <= 0:
        raise ValidationError("Limit must be greater than zero")

    stmt = (
        _balances_with_customer(session, store_id)
        .where(CustomerBalance.outstanding_balance_cents > 0)
        .order_by(CustomerBalance.outstanding_balance_cents.desc(), CustomerBalance.customer_id.asc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return [_balance_row(b, c) for b, c in session.execute(stmt).all()]


def customers_in_credit(session, store_id: int) -> list[dict]:
    """Customers who have paid more than they were given (negative balance)."""
    _require_store(session, store_id)
    stmt = (
        _balances_with_customer(session, store_id)
        .where(CustomerBalance.outstanding_balance_cents < 0)
        .order_by(CustomerBalance.outstanding_balance_cents.asc())
    )
    return [_balance_row(b, c) for b, c in session.execute(stmt).all()]


def overdue_customers(session, store_id: int, overdue_days: int | None = None,
                      as_of: datetime | None = None) -> list[dict]:
    """
    Customers with an outstanding balance whose last payment is older than
    the threshold. Customers who never paid are overdue once their last
    credit is older than the threshold.

    overdue_days defaults to the OVERDUE_DAYS config value.
    """
    _require_store(session, store_id)
    if overdue_days is None:
        overdue_days = current_app.config.get("OVERDUE_DAYS", 30)
    if overdue_days < 0:
        raise ValidationError("overdue_days cannot be negative")

    as_of = normalize_utc(as_of) or utcnow()
    cutoff = days_before(overdue_days, as_of)
    stmt = (
        _balances_with_customer(session, store_id)
        .where(CustomerBalance.outstanding_balance_cents > 0)
        .where(
            (CustomerBalance.last_payment_date < cutoff)
            | (CustomerBalance.last_payment_date.is_(None) & (CustomerBalance.last_credit_date < cutoff))
        )
        .order_by(CustomerBalance.outstanding_balance_cents.desc())
    )

    rows = []
    for balance, customer in session.execute(stmt).all():
        data = _balance_row(balance, customer)
        reference = balance.last_payment_date or balance.last_credit_date
        data["days_overdue"] = (as_of - reference).days
        rows.append(data)
    return rows
