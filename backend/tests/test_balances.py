# Overview: Pytest coverage for balance folding, rebuild, verification and amend/delete.

import random
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from credis.errors import ConsistencyError, CreditLimitExceededError, NotFoundError, ValidationError
from credis.models import CustomerBalance
from credis.services import balance_service, ledger_service


def _fake_entry(amount, kind, date):
    return SimpleNamespace(amount_cents=amount, transaction_type=kind, transaction_date=date)


def _corrupt(db_session, customer_id, store_id, **values):
    db_session.execute(
        update(CustomerBalance)
        .where(CustomerBalance.customer_id == customer_id, CustomerBalance.store_id == store_id)
        .values(**values)
    )
    db_session.commit()


class TestFold:
    def test_fold_is_order_independent(self):
        base = datetime(2026, 1, 1)
        entries = [
            _fake_entry(amount, kind, base + timedelta(days=i))
            for i, (amount, kind) in enumerate([
                (5000, "credit_given"), (1500, "payment_received"), (250, "credit_given"),
                (900, "payment_received"), (75, "credit_given"),
            ])
        ]
        expected = balance_service.fold_entries(entries)

        rng = random.Random(7)
        for _ in range(10):
            shuffled = entries[:]
            rng.shuffle(shuffled)
            assert balance_service.fold_entries(shuffled) == expected

        assert expected.total_credit_given_cents == 5325
        assert expected.total_payments_received_cents == 2400
        assert expected.outstanding_balance_cents == 2925
        assert expected.transaction_count == 5
        assert expected.last_payment_date == base + timedelta(days=3)
        assert expected.last_credit_date == base + timedelta(days=4)

    def test_fold_of_nothing(self):
        totals = balance_service.fold_entries([])
        assert totals.outstanding_balance_cents == 0
        assert totals.last_transaction_date is None


class TestApplyMatchesFold:
    def test_incremental_row_equals_fold(self, db_session, store_a, customer_a):
        rng = random.Random(11)
        base = datetime(2026, 2, 1)
        for _ in range(25):
            ledger_service.record_transaction(
                db_session, customer_a.id, store_a.id,
                rng.randint(1, 10_000),
                rng.choice(["credit_given", "payment_received"]),
                transaction_date=base + timedelta(hours=rng.randint(0, 2000)),
            )

        balance = balance_service.get_balance(db_session, customer_a.id, store_a.id)
        totals = balance_service.fold_entries(
            balance_service.pair_entries(db_session, customer_a.id, store_a.id)
        )
        assert balance.totals() == totals.as_balance_fields()


class TestRebuild:
    def test_rebuild_twice_equals_once(self, db_session, store_a, customer_a):
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 5000, "credit_given")
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 1500, "payment_received")

        first = balance_service.rebuild_balance(db_session, customer_a.id, store_a.id).totals()
        second = balance_service.rebuild_balance(db_session, customer_a.id, store_a.id).totals()
        assert first == second
        assert first["outstanding_balance_cents"] == 3500

    def test_rebuild_repairs_corrupted_row(self, db_session, store_a, customer_a):
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 5000, "credit_given")
        _corrupt(db_session, customer_a.id, store_a.id, outstanding_balance_cents=1, total_credit_given_cents=1)

        balance = balance_service.rebuild_balance(db_session, customer_a.id, store_a.id)
        assert balance.total_credit_given_cents == 5000
        assert balance.outstanding_balance_cents == 5000

    def test_rebuild_without_entries_gives_zero_row(self, db_session, store_a, customer_a):
        balance = balance_service.rebuild_balance(db_session, customer_a.id, store_a.id)
        assert balance.outstanding_balance_cents == 0
        assert balance.last_transaction_date is None

    def test_rebuild_unknown_pair(self, db_session, store_a, customer_b):
        with pytest.raises(NotFoundError):
            balance_service.rebuild_balance(db_session, customer_b.id, store_a.id)

    def test_get_balance_missing(self, db_session, store_a, customer_a):
        with pytest.raises(NotFoundError):
            balance_service.get_balance(db_session, customer_a.id, store_a.id)


class TestVerify:
    def test_consistent_row_passes(self, db_session, store_a, customer_a):
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 400, "credit_given")
        balance = balance_service.verify_balance(db_session, customer_a.id, store_a.id)
        assert balance.outstanding_balance_cents == 400

    def test_divergence_raises(self, db_session, store_a, customer_a):
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 400, "credit_given")
        _corrupt(db_session, customer_a.id, store_a.id, outstanding_balance_cents=999)

        with pytest.raises(ConsistencyError) as excinfo:
            balance_service.verify_balance(db_session, customer_a.id, store_a.id)
        assert excinfo.value.stored["outstanding_balance_cents"] == 999
        assert excinfo.value.expected["outstanding_balance_cents"] == 400

    def test_repair_rebuilds(self, db_session, store_a, customer_a):
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 400, "credit_given")
        _corrupt(db_session, customer_a.id, store_a.id, outstanding_balance_cents=999)

        balance = balance_service.verify_balance(db_session, customer_a.id, store_a.id, repair=True)
        assert balance.outstanding_balance_cents == 400
        balance_service.verify_balance(db_session, customer_a.id, store_a.id)

    def test_verify_all_reports_and_repairs(self, db_session, store_a, store_b, customer_a, customer_b):
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 400, "credit_given")
        ledger_service.record_transaction(db_session, customer_b.id, store_b.id, 900, "credit_given")
        _corrupt(db_session, customer_b.id, store_b.id, total_credit_given_cents=1)

        report = balance_service.verify_all_balances(db_session)
        assert [(r["customer_id"], r["store_id"]) for r in report] == [(customer_b.id, store_b.id)]

        repaired = balance_service.verify_all_balances(db_session, repair=True)
        assert repaired[0]["repaired"] is True
        assert balance_service.verify_all_balances(db_session) == []


class TestAmendAndDelete:
    """Administrative corrections always leave the balance equal to the fold."""

    def test_amend_amount_rebuilds(self, db_session, store_a, customer_a):
        entry = ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 5000, "credit_given")
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 1500, "payment_received")

        _, balance = ledger_service.amend_entry(db_session, entry.id, amount_cents=4000)
        assert balance.total_credit_given_cents == 4000
        assert balance.outstanding_balance_cents == 2500

    def test_amend_type_flips_direction(self, db_session, store_a, customer_a):
        entry = ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 300, "credit_given")
        _, balance = ledger_service.amend_entry(db_session, entry.id, transaction_type="payment_received")
        assert balance.outstanding_balance_cents == -300
        assert balance.last_credit_date is None

    def test_amend_rejects_unknown_field(self, db_session, store_a, customer_a):
        entry = ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 300, "credit_given")
        with pytest.raises(ValidationError):
            ledger_service.amend_entry(db_session, entry.id, customer_id=42)

    def test_amend_rejects_bad_amount(self, db_session, store_a, customer_a):
        entry = ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 300, "credit_given")
        with pytest.raises(ValidationError):
            ledger_service.amend_entry(db_session, entry.id, amount_cents=-1)

    def test_amend_over_credit_limit(self, db_session, store_a, customer_a):
        customer_a.credit_limit_cents = 1000
        db_session.commit()
        entry = ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 900, "credit_given")

        with pytest.raises(CreditLimitExceededError):
            ledger_service.amend_entry(db_session, entry.id, amount_cents=1200)

        balance = balance_service.get_balance(db_session, customer_a.id, store_a.id)
        assert balance.outstanding_balance_cents == 900

    def test_amend_other_store_not_found(self, db_session, store_a, store_b, customer_a):
        entry = ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 300, "credit_given")
        with pytest.raises(NotFoundError):
            ledger_service.amend_entry(db_session, entry.id, store_id=store_b.id, amount_cents=100)

    def test_delete_rebuilds(self, db_session, store_a, customer_a):
        ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 5000, "credit_given")
        payment = ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 1500, "payment_received")

        balance = ledger_service.delete_entry(db_session, payment.id)
        assert balance.outstanding_balance_cents == 5000
        assert balance.total_payments_received_cents == 0
        assert balance.last_payment_date is None

        with pytest.raises(NotFoundError):
            ledger_service.get_entry(db_session, payment.id)
