"""Tests for renewal-time reconciliation of deferred module removals."""

from datetime import UTC, datetime, timedelta

import pytest

from modgate.core.result import Ok
from modgate.models.account_module import AccountModule, EntitlementState
from modgate.models.audit_log import AuditLog
from modgate.models.shared import as_utc
from modgate.repositories.account_module_repository import AccountModuleRepository
from modgate.services.billing_gateway import BillingGatewayError
from modgate.services.entitlement_manager import EntitlementManager
from modgate.services.reconciliation import ReconciliationWorker
from tests.conftest import PRICES, acting

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=UTC)
PERIOD_START = datetime(2024, 5, 1, tzinfo=UTC)
PERIOD_END = datetime(2024, 6, 1, tzinfo=UTC)


@pytest.fixture
def worker(db_session, billing_gateway):
    return ReconciliationWorker(db_session, billing_gateway)


@pytest.fixture
def paid_account(make_account, billing_gateway):
    billing_gateway.add_subscription("sub_paid", period_start=PERIOD_START, period_end=PERIOD_END)
    return make_account(is_paid=True, subscription_id="sub_paid")


def _pending(enable_module, account, code, item_id, target=PERIOD_END) -> AccountModule:
    return enable_module(
        account,
        code,
        billing_item_id=item_id,
        disabled_at=target,
        pending_deletion=True,
        pending_deletion_at=target,
    )


def _reload(db, entitlement: AccountModule) -> AccountModule:
    db.expire_all()
    return db.query(AccountModule).filter(AccountModule.id == entitlement.id).one()


class TestRenewalReconciliation:
    def test_deferred_removal_is_finalized_at_renewal(
        self, db_session, billing_gateway, make_user, paid_account, enable_module, worker
    ):
        """End to end: remove inside a paid period, then the next period starts."""
        user = make_user(paid_account)
        billing_gateway.add_item("si_analytics", "sub_paid")
        entitlement = enable_module(paid_account, "analytics", billing_item_id="si_analytics")
        manager = EntitlementManager(
            db_session, billing_gateway, clock=lambda: NOW, module_prices=PRICES
        )
        assert isinstance(manager.request_deactivation("analytics", acting(user)), Ok)

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.examined == 1
        assert summary.removed == 1
        assert summary.failed == 0
        assert summary.removed_item_ids == ["si_analytics"]
        assert billing_gateway.calls_to("delete_line_item") == [
            ("delete_line_item", "si_analytics")
        ]
        assert "si_analytics" not in billing_gateway.items

        row = _reload(db_session, entitlement)
        assert row.billing_item_id is None
        assert row.pending_deletion is False
        assert row.pending_deletion_at is None
        assert as_utc(row.disabled_at) == PERIOD_END
        assert row.state(PERIOD_END) == EntitlementState.INACTIVE

    def test_period_start_read_from_gateway_when_not_given(
        self, db_session, billing_gateway, paid_account, enable_module, worker
    ):
        billing_gateway.add_subscription(
            "sub_paid", period_start=PERIOD_END, period_end=PERIOD_END + timedelta(days=30)
        )
        entitlement = _pending(enable_module, paid_account, "nps", "si_nps")

        summary = worker.reconcile("sub_paid")

        assert summary.cutoff == PERIOD_END
        assert summary.removed == 1
        assert billing_gateway.calls_to("retrieve_subscription") == [
            ("retrieve_subscription", "sub_paid")
        ]
        assert _reload(db_session, entitlement).pending_deletion is False

    def test_rows_not_yet_due_are_left_alone(
        self, db_session, billing_gateway, paid_account, enable_module, worker
    ):
        later = PERIOD_END + timedelta(days=31)
        entitlement = _pending(enable_module, paid_account, "nps", "si_nps", target=later)

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.examined == 0
        assert billing_gateway.calls_to("delete_line_item") == []
        assert _reload(db_session, entitlement).pending_deletion is True

    def test_other_subscriptions_are_not_touched(
        self, db_session, billing_gateway, make_account, paid_account, enable_module, worker
    ):
        other = make_account(is_paid=True, subscription_id="sub_other")
        mine = _pending(enable_module, paid_account, "nps", "si_mine")
        theirs = _pending(enable_module, other, "nps", "si_theirs")

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.removed == 1
        assert _reload(db_session, mine).pending_deletion is False
        assert _reload(db_session, theirs).pending_deletion is True

    def test_running_twice_gives_same_end_state(
        self, db_session, billing_gateway, paid_account, enable_module, worker
    ):
        """Duplicate delivery of the renewal event is harmless."""
        entitlement = _pending(enable_module, paid_account, "nps", "si_nps")

        first = worker.reconcile("sub_paid", period_start=PERIOD_END)
        after_first = _reload(db_session, entitlement)
        state_after_first = (
            after_first.billing_item_id,
            after_first.pending_deletion,
            as_utc(after_first.disabled_at),
        )
        second = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert first.removed == 1
        assert second.examined == 0
        after_second = _reload(db_session, entitlement)
        assert (
            after_second.billing_item_id,
            after_second.pending_deletion,
            as_utc(after_second.disabled_at),
        ) == state_after_first
        assert len(billing_gateway.calls_to("delete_line_item")) == 1


class TestReconciliationFailures:
    def test_delete_failure_leaves_row_pending(
        self, db_session, billing_gateway, paid_account, enable_module, worker
    ):
        entitlement = _pending(enable_module, paid_account, "nps", "si_nps")
        billing_gateway.failures["delete_line_item"] = BillingGatewayError("rate limited")

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.failed == 1
        assert summary.removed == 0
        row = _reload(db_session, entitlement)
        assert row.pending_deletion is True
        assert row.billing_item_id == "si_nps"
        assert row.version == 1
        failure = (
            db_session.query(AuditLog).filter(AuditLog.action == "billing_sync_failed").one()
        )
        assert failure.metadata_["operation"] == "delete_line_item"

    def test_failed_row_is_retried_on_next_run(
        self, db_session, billing_gateway, paid_account, enable_module, worker
    ):
        entitlement = _pending(enable_module, paid_account, "nps", "si_nps")
        billing_gateway.failures["delete_line_item"] = BillingGatewayError("rate limited")
        worker.reconcile("sub_paid", period_start=PERIOD_END)
        del billing_gateway.failures["delete_line_item"]

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.removed == 1
        assert _reload(db_session, entitlement).pending_deletion is False

    def test_one_failure_does_not_block_other_rows(
        self, db_session, billing_gateway, paid_account, enable_module, worker
    ):
        _pending(enable_module, paid_account, "analytics", "si_analytics")
        _pending(enable_module, paid_account, "nps", "si_nps")
        delete = billing_gateway.delete_line_item

        def delete_failing_analytics(item_id):
            if item_id == "si_analytics":
                raise BillingGatewayError("boom")
            return delete(item_id)

        billing_gateway.delete_line_item = delete_failing_analytics

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.examined == 2
        assert summary.removed == 1
        assert summary.failed == 1
        assert summary.removed_item_ids == ["si_nps"]

    def test_subscription_lookup_failure_propagates(self, billing_gateway, worker):
        billing_gateway.failures["retrieve_subscription"] = BillingGatewayError("down")

        with pytest.raises(BillingGatewayError):
            worker.reconcile("sub_paid")


class TestReconciliationSkips:
    def test_mismatched_target_is_skipped(
        self, db_session, billing_gateway, paid_account, enable_module, worker
    ):
        entitlement = enable_module(
            paid_account,
            "nps",
            billing_item_id="si_nps",
            disabled_at=PERIOD_END,
            pending_deletion=True,
            pending_deletion_at=PERIOD_END - timedelta(days=2),
        )

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.skipped == 1
        assert billing_gateway.calls_to("delete_line_item") == []
        assert _reload(db_session, entitlement).pending_deletion is True

    def test_row_changed_during_delete_is_left_alone(
        self, db_session, billing_gateway, paid_account, enable_module, worker
    ):
        """The clear is conditioned on the version read before the billing call."""
        entitlement = _pending(enable_module, paid_account, "nps", "si_nps")
        repo = AccountModuleRepository(db_session)
        delete = billing_gateway.delete_line_item

        def delete_then_competing_write(item_id):
            delete(item_id)
            row = repo.get_by_id(entitlement.id)
            repo.compare_and_set(row.id, row.version, billing_item_id="si_replacement")

        billing_gateway.delete_line_item = delete_then_competing_write

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.removed == 0
        assert summary.skipped == 1
        row = _reload(db_session, entitlement)
        assert row.billing_item_id == "si_replacement"
        assert row.pending_deletion is True


class TestFuturePeriodStart:
    def test_row_inside_paid_period_is_not_finalized(
        self, db_session, billing_gateway, paid_account, enable_module
    ):
        """A cutoff past the current time never removes a still-paid module."""
        billing_gateway.add_item("si_analytics", "sub_paid")
        entitlement = _pending(enable_module, paid_account, "analytics", "si_analytics")
        worker = ReconciliationWorker(db_session, billing_gateway, clock=lambda: NOW)

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.cutoff == NOW
        assert summary.examined == 0
        assert billing_gateway.calls_to("delete_line_item") == []
        assert "si_analytics" in billing_gateway.items
        row = _reload(db_session, entitlement)
        assert row.billing_item_id == "si_analytics"
        assert row.pending_deletion is True

    def test_reactivation_after_early_run_keeps_billing_item(
        self, db_session, billing_gateway, paid_account, enable_module, make_user
    ):
        user = make_user(paid_account)
        billing_gateway.add_item("si_analytics", "sub_paid")
        entitlement = _pending(enable_module, paid_account, "analytics", "si_analytics")
        ReconciliationWorker(db_session, billing_gateway, clock=lambda: NOW).reconcile(
            "sub_paid", period_start=PERIOD_END
        )
        manager = EntitlementManager(
            db_session, billing_gateway, clock=lambda: NOW, module_prices=PRICES
        )

        result = manager.request_activation("analytics", acting(user))

        assert isinstance(result, Ok)
        assert result.value.reactivated is True
        row = _reload(db_session, entitlement)
        assert row.state(NOW) == EntitlementState.ACTIVE
        assert row.billing_item_id == "si_analytics"
        assert "si_analytics" in billing_gateway.items

    def test_due_rows_are_still_finalized_with_capped_cutoff(
        self, db_session, billing_gateway, paid_account, enable_module
    ):
        entitlement = _pending(
            enable_module, paid_account, "nps", "si_nps", target=NOW - timedelta(days=1)
        )
        worker = ReconciliationWorker(db_session, billing_gateway, clock=lambda: NOW)

        summary = worker.reconcile("sub_paid", period_start=PERIOD_END)

        assert summary.removed == 1
        assert _reload(db_session, entitlement).pending_deletion is False
