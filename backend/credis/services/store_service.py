# Overview: Service-layer operations for stores and their customers.

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Customer, Store, StoreOwner
from .concurrency import lock_for_update, run_with_retry


def _require_text(value, field: str, min_length: int = 1) -> str:
    if not isinstance(value, str) or len(value.strip()) < min_length:
        if min_length > 1:
            raise ValidationError(f"{field} must be at least {min_length} characters")
        raise ValidationError(f"{field} is required")
    return value.strip()


def _optional_text(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def create_store(session, name: str, address: str | None = None, phone: str | None = None,
                 owner_id: int | None = None) -> Store:
    """
    Create a store. When ``owner_id`` names an owner without a store, that
    owner is assigned to the new store in the same transaction.
    """
    name = _require_text(name, "Store name", 2)

    def _op():
        owner = None
        if owner_id is not None:
            owner = lock_for_update(session.query(StoreOwner).filter_by(id=owner_id)).one_or_none()
            if owner is None:
                raise NotFoundError("Store owner not found")
            if owner.store_id is not None:
                raise ConflictError("Store owner already has a store")

        store = Store(name=name, address=_optional_text(address), phone=_optional_text(phone))
        session.add(store)
        session.flush()
        if owner is not None:
            owner.store_id = store.id

        session.commit()
        return store

    try:
        return run_with_retry(session, _op)
    except (NotFoundError, ConflictError):
        session.rollback()
        raise


def get_store(session, store_id: int) -> Store:
    store = session.get(Store, store_id)
    if store is None:
        raise NotFoundError("Store not found")
    return store


def create_customer(session, store_id: int, name: str, phone: str, email: str | None = None,
                    credit_limit_cents: int = 0) -> Customer:
    """
    Register a customer at a store.

    Raises:
        ValidationError: blank name/phone, negative credit limit
        NotFoundError: unknown store
        ConflictError: phone already used by another customer of the store
    """
    name = _require_text(name, "Name", 2)
    phone = _require_text(phone, "phone")
    if credit_limit_cents is None:
        credit_limit_cents = 0
    if not isinstance(credit_limit_cents, int) or isinstance(credit_limit_cents, bool):
        raise ValidationError("credit_limit_cents must be an integer")
    if credit_limit_cents < 0:
        raise ValidationError("credit_limit_cents must be >= 0")

    get_store(session, store_id)

    existing = session.execute(
        select(Customer.id).where(Customer.store_id == store_id, Customer.phone == phone)
    ).first()
    if existing:
        raise ConflictError("Customer with this phone number already exists in this store")

    customer = Customer(
        store_id=store_id,
        name=name,
        phone=phone,
        email=_optional_text(email),
        credit_limit_cents=credit_limit_cents,
        is_active=True,
    )
    session.add(customer)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError("Customer with this phone number already exists in this store")
    return customer


def get_customer(session, customer_id: int, *, store_id: int | None = None) -> Customer:
    customer = session.get(Customer, customer_id)
    if customer is None or (store_id is not None and customer.store_id != store_id):
        raise NotFoundError("Customer not found")
    return customer


def list_customers(session, store_id: int, *, include_inactive: bool = False) -> list[Customer]:
    get_store(session, store_id)
    stmt = select(Customer).where(Customer.store_id == store_id)
    if not include_inactive:
        stmt = stmt.where(Customer.is_active.is_(True))
    return list(session.execute(stmt.order_by(Customer.name.asc(), Customer.id.asc())).scalars())


def deactivate_customer(session, customer_id: int, *, store_id: int | None = None) -> Customer:
    """Soft delete: history and balance stay, new transactions are refused."""
    customer = get_customer(session, customer_id, store_id=store_id)
    customer.is_active = False
    session.commit()
    return customer
