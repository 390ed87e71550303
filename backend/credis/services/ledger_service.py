# Overview: Service-layer operations for the credit ledger; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import CredisError, CreditLimitExceededError, NotFoundError, ValidationError
from ..models import Customer, CustomerBalance, LedgerEntry, Store, CREDIT_GIVEN, TRANSACTION_TYPES
from . import balance_service
from .concurrency import lock_for_update, run_with_retry
from credis.time_utils import normalize_utc

"""
Credit Ledger Invariants (authoritative)

- Append-only: one row per credit given or payment received.
- amount_cents is a positive magnitude; direction is transaction_type.
- The entry insert and the CustomerBalance upsert are one unit of work:
  both commit or neither does. Transient storage failures retry the
  whole unit a bounded number of times; business errors never retry.
- transaction_date is business time; created_at is system time (DB default).
- Amend/delete exist for administrative correction only and always
  rebuild the pair's balance inside the same transaction.
"""

AMENDABLE_FIELDS = {"amount_cents", "transaction_type", "transaction_date", "items_description", "journal_number"}


def validate_transaction_type(transaction_type) -> str:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(
            f"transaction_type must be one of: {', '.join(TRANSACTION_TYPES)}"
        )
    return transaction_type


def validate_amount_cents(amount_cents) -> int:
    # bool is an int subclass; reject it explicitly
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool):
        raise ValidationError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise ValidationError("Amount must be greater than zero")
    return amount_cents


def _load_pair(session, customer_id: int, store_id: int) -> Customer:
    store = session.get(Store, store_id)
    if store is None:
        raise NotFoundError("Store not found")
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    if customer.store_id != store_id:
        raise NotFoundError("Customer not found in this store")
    return customer


def _enforce_credit_limit(customer: Customer, balance: CustomerBalance, entry: LedgerEntry) -> None:
    """Checked after the upsert, while this transaction holds the pair's row."""
    limit = customer.credit_limit_cents or 0
    if entry.transaction_type != CREDIT_GIVEN or limit <= 0:
        return
    if balance.outstanding_balance_cents > limit:
        previous = balance.outstanding_balance_cents - entry.amount_cents
        raise CreditLimitExceededError(
            f"Credit limit exceeded. Current balance: {previous}, Credit limit: {limit}",
            outstanding_cents=previous,
            credit_limit_cents=limit,
        )


def record_transaction(
    session,
    customer_id: int,
    store_id: int,
    amount_cents: int,
    transaction_type: str,
    *,
    transaction_date: datetime | None = None,
    items_description: str | None = None,
    journal_number: str | None = None,
    created_by_owner_id: int | None = None,
) -> LedgerEntry:
    """
    Append one ledger entry and fold it into the pair's balance atomically.

    Returns the committed entry; the updated row is available through
    balance_service.get_balance.

    Raises:
        ValidationError: bad amount/type, inactive customer
        CreditLimitExceededError: credit would exceed the customer's limit
        NotFoundError: store or customer missing, or customer not in store
    """
    validate_transaction_type(transaction_type)
    validate_amount_cents(amount_cents)
    transaction_date = normalize_utc(transaction_date)

    def _op():
        try:
            customer = _load_pair(session, customer_id, store_id)
            if not customer.is_active:
                raise ValidationError("Cannot create credit transaction for inactive customer")

            entry = LedgerEntry(
                customer_id=customer_id,
                store_id=store_id,
                amount_cents=amount_cents,
                transaction_type=transaction_type,
                items_description=items_description,
                journal_number=journal_number,
                created_by_owner_id=created_by_owner_id,
            )
            if transaction_date is not None:
                entry.transaction_date = transaction_date
            session.add(entry)
            session.flush()  # ensures entry.id and defaults are assigned without committing

            balance = balance_service.apply_entry(session, entry)
            _enforce_credit_limit(customer, balance, entry)

            session.commit()
        except CredisError:
            session.rollback()
            raise
        return entry

    entry = run_with_retry(session, _op)
    current_app.logger.info(
        "Recorded %s of %d cents for customer_id=%s store_id=%s (entry id=%s)",
        transaction_type, amount_cents, customer_id, store_id, entry.id,
    )
    return entry


def get_entry(session, entry_id: int, *, store_id: int | None = None) -> LedgerEntry:
    """Fetch one entry. store_id, when given, scopes the lookup to that tenant."""
    entry = session.get(LedgerEntry, entry_id)
    if entry is None or (store_id is not None and entry.store_id != store_id):
        raise NotFoundError("Credit transaction not found")
    return entry


def amend_entry(session, entry_id: int, *, store_id: int | None = None, **changes) -> tuple[LedgerEntry, CustomerBalance]:
    """
    Administrative correction of an entry, followed by a rebuild of its pair.

    Entries are immutable by contract; prefer compensating entries. This path
    exists for data-entry mistakes and never leaves the balance stale.
    """
    unknown = set(changes) - AMENDABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not amendable: {', '.join(sorted(unknown))}")
    if not changes:
        raise ValidationError("No changes supplied")
    if "amount_cents" in changes:
        validate_amount_cents(changes["amount_cents"])
    if "transaction_type" in changes:
        validate_transaction_type(changes["transaction_type"])
    if changes.get("transaction_date") is not None:
        changes["transaction_date"] = normalize_utc(changes["transaction_date"])
    elif "transaction_date" in changes:
        raise ValidationError("transaction_date cannot be cleared")

    def _op():
        try:
            entry = lock_for_update(session.query(LedgerEntry).filter_by(id=entry_id)).one_or_none()
            if entry is None or (store_id is not None and entry.store_id != store_id):
                raise NotFoundError("Credit transaction not found")

            for field, value in changes.items():
                setattr(entry, field, value)
            session.flush()

            balance = balance_service.rebuild_balance(session, entry.customer_id, entry.store_id, commit=False)
            customer = session.get(Customer, entry.customer_id)
            limit = customer.credit_limit_cents or 0
            if entry.transaction_type == CREDIT_GIVEN and limit > 0 and balance.outstanding_balance_cents > limit:
                raise CreditLimitExceededError(
                    f"Updated transaction would exceed credit limit. Credit limit: {limit}",
                    outstanding_cents=balance.outstanding_balance_cents,
                    credit_limit_cents=limit,
                )
            session.commit()
        except CredisError:
            session.rollback()
            raise
        return entry, balance

    entry, balance = run_with_retry(session, _op)
    current_app.logger.warning(
        "Amended ledger entry id=%s (%s); balance rebuilt for customer_id=%s store_id=%s",
        entry.id, ", ".join(sorted(changes)), entry.customer_id, entry.store_id,
    )
    return entry, balance


def delete_entry(session, entry_id: int, *, store_id: int | None = None) -> CustomerBalance:
    """Administrative removal of an entry, followed by a rebuild of its pair."""
    def _op():
        try:
            entry = lock_for_update(session.query(LedgerEntry).filter_by(id=entry_id)).one_or_none()
            if entry is None or (store_id is not None and entry.store_id != store_id):
                raise NotFoundError("Credit transaction not found")
            customer_id, pair_store_id = entry.customer_id, entry.store_id

            session.delete(entry)
            session.flush()

            balance = balance_service.rebuild_balance(session, customer_id, pair_store_id, commit=False)
            session.commit()
        except CredisError:
            session.rollback()
            raise
        return balance

    balance = run_with_retry(session, _op)
    current_app.logger.warning(
        "Deleted ledger entry id=%s; balance rebuilt for customer_id=%s store_id=%s",
        entry_id, balance.customer_id, balance.store_id,
    )
    return balance
