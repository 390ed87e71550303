from __future__ import annotations

from ..extensions import db
from credis.time_utils import to_utc_z, utcnow


CREDIT_GIVEN = "credit_given"
PAYMENT_RECEIVED = "payment_received"
TRANSACTION_TYPES = (CREDIT_GIVEN, PAYMENT_RECEIVED)


class LedgerEntry(db.Model):
    """
    One credit-given or payment-received event.

    IMMUTABLE by contract: amounts are positive magnitudes and the direction
    lives in transaction_type. Corrections are compensating entries. The
    administrative amend/delete path in ledger_service rebuilds the pair's
    CustomerBalance in the same transaction.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_ledger_entries_amount_positive"),
        db.CheckConstraint(
            "transaction_type IN ('credit_given', 'payment_received')",
            name="ck_ledger_entries_type",
        ),
        db.Index("ix_ledger_entries_pair_date", "customer_id", "store_id", "transaction_date"),
        db.Index("ix_ledger_entries_store_date", "store_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    transaction_type = db.Column(db.String(32), nullable=False, index=True)

    # Business time; created_at is system time
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    items_description = db.Column(db.Text, nullable=True)
    journal_number = db.Column(db.String(64), nullable=True)
    created_by_owner_id = db.Column(db.Integer, db.ForeignKey("store_owners.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy=True))
    store = db.relationship("Store", backref=db.backref("ledger_entries", lazy=True))
    created_by = db.relationship("StoreOwner")

    @property
    def signed_amount_cents(self) -> int:
        """Effect on the outstanding balance."""
        if self.transaction_type == CREDIT_GIVEN:
            return self.amount_cents
        return -self.amount_cents

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} customer_id={self.customer_id} store_id={self.store_id} "
            f"{self.transaction_type} {self.amount_cents}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "store_id": self.store_id,
            "amount_cents": self.amount_cents,
            "transaction_type": self.transaction_type,
            "transaction_date": to_utc_z(self.transaction_date),
            "items_description": self.items_description,
            "journal_number": self.journal_number,
            "created_by_owner_id": self.created_by_owner_id,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerBalance(db.Model):
    """
    Running balance of one customer at one store.

    DERIVED: a materialized cache of the fold over LedgerEntry rows for the
    (customer_id, store_id) pair, never authored directly. balance_service
    keeps it current with an atomic upsert and can rebuild it from scratch.

    outstanding_balance_cents may be negative when the customer has overpaid.
    """
    __tablename__ = "customer_balances"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "store_id", name="uq_customer_balances_pair"),
        db.Index("ix_customer_balances_store_outstanding", "store_id", "outstanding_balance_cents"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)

    total_credit_given_cents = db.Column(db.Integer, nullable=False, default=0)
    total_payments_received_cents = db.Column(db.Integer, nullable=False, default=0)
    outstanding_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    last_credit_date = db.Column(db.DateTime(timezone=True), nullable=True)
    last_payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    last_transaction_date = db.Column(db.DateTime(timezone=True), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer", backref=db.backref("balances", lazy=True, passive_deletes=True))
    store = db.relationship("Store", backref=db.backref("customer_balances", lazy=True, passive_deletes=True))

    def totals(self) -> dict:
        """Numeric/date view used for consistency comparisons."""
        return {
            "total_credit_given_cents": self.total_credit_given_cents,
            "total_payments_received_cents": self.total_payments_received_cents,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "last_credit_date": self.last_credit_date,
            "last_payment_date": self.last_payment_date,
            "last_transaction_date": self.last_transaction_date,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "store_id": self.store_id,
            "total_credit_given_cents": self.total_credit_given_cents,
            "total_payments_received_cents": self.total_payments_received_cents,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "last_credit_date": to_utc_z(self.last_credit_date),
            "last_payment_date": to_utc_z(self.last_payment_date),
            "last_transaction_date": to_utc_z(self.last_transaction_date),
            "updated_at": to_utc_z(self.updated_at),
        }
