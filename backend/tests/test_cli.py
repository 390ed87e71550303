# Overview: Pytest coverage for the ledger and maintenance CLI commands.

from datetime import timedelta

import pytest
from sqlalchemy import update

from credis.models import CustomerBalance, RefreshToken
from credis.services import auth_service, balance_service, ledger_service
from credis.time_utils import utcnow

from conftest import OWNER_PASSWORD


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def two_pairs(db_session, store_a, store_b, customer_a, customer_b):
    ledger_service.record_transaction(db_session, customer_a.id, store_a.id, 700, "credit_given")
    ledger_service.record_transaction(db_session, customer_b.id, store_b.id, 300, "credit_given")
    return [(customer_a.id, store_a.id), (customer_b.id, store_b.id)]


def _corrupt(db_session, customer_id, store_id, outstanding):
    db_session.execute(
        update(CustomerBalance)
        .where(CustomerBalance.customer_id == customer_id, CustomerBalance.store_id == store_id)
        .values(outstanding_balance_cents=outstanding)
    )
    db_session.commit()


class TestLedgerVerify:
    def test_clean_ledger_passes(self, runner, two_pairs):
        result = runner.invoke(args=["ledger", "verify"])
        assert result.exit_code == 0
        assert "PASS All balances match" in result.output

    def test_divergence_exits_non_zero(self, runner, db_session, two_pairs):
        customer_id, store_id = two_pairs[0]
        _corrupt(db_session, customer_id, store_id, 1)

        result = runner.invoke(args=["ledger", "verify"])
        assert result.exit_code == 1
        assert f"DIVERGED customer={customer_id} store={store_id} stored=1 expected=700" in result.output
        assert "FAIL 1 balance row(s) diverged" in result.output

        # Without --repair the row is left as found
        assert balance_service.get_balance(db_session, customer_id, store_id).outstanding_balance_cents == 1

    def test_repair_fixes_row(self, runner, db_session, two_pairs):
        customer_id, store_id = two_pairs[0]
        _corrupt(db_session, customer_id, store_id, 1)

        result = runner.invoke(args=["ledger", "verify", "--repair"])
        assert result.exit_code == 0
        assert f"REPAIRED customer={customer_id} store={store_id}" in result.output
        assert "PASS Repaired 1 balance row(s)." in result.output

        assert balance_service.get_balance(db_session, customer_id, store_id).outstanding_balance_cents == 700
        assert runner.invoke(args=["ledger", "verify"]).exit_code == 0


class TestLedgerRebuild:
    def test_rebuild_one_pair(self, runner, db_session, two_pairs):
        customer_id, store_id = two_pairs[1]
        _corrupt(db_session, customer_id, store_id, 9)

        result = runner.invoke(args=["ledger", "rebuild", "--customer-id", str(customer_id),
                                     "--store-id", str(store_id)])
        assert result.exit_code == 0
        assert "outstanding=300" in result.output

    def test_rebuild_customer_of_other_store(self, runner, two_pairs, customer_b, store_a):
        result = runner.invoke(args=["ledger", "rebuild", "--customer-id", str(customer_b.id),
                                     "--store-id", str(store_a.id)])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_rebuild_all_reports_count(self, runner, db_session, two_pairs):
        for customer_id, store_id in two_pairs:
            _corrupt(db_session, customer_id, store_id, 0)

        result = runner.invoke(args=["ledger", "rebuild-all"])
        assert result.exit_code == 0
        assert "PASS Rebuilt 2 balance row(s)." in result.output
        assert balance_service.verify_all_balances(db_session) == []


class TestMaintenance:
    def test_cleanup_tokens(self, runner, db_session, owner_a):
        auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        auth_service.logout(db_session, owner_a.id)
        row = db_session.query(RefreshToken).one()
        row.created_at = utcnow() - timedelta(days=60)
        db_session.commit()

        result = runner.invoke(args=["maintenance", "cleanup-tokens", "--older-than-days", "30"])
        assert result.exit_code == 0
        assert "Deleted 1 refresh tokens older than 30 days." in result.output
        assert db_session.query(RefreshToken).count() == 0
