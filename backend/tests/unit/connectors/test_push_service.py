"""Unit tests for OrderPushService: payment gating, idempotency and crash recovery."""

from datetime import timedelta

import pytest

from connectors.config_service import build_router
from connectors.erp_statuses import ErpOrderStatus
from connectors.ports import ErpApiError, TransportError
from connectors.push_service import OrderPushService, order_marker
from connectors.warehouse_router import WarehouseRouter
from fixtures.erp import FakeErpClient
from models import Order
from models.base import as_utc, utcnow
from orders.lifecycle import cancel_order, confirm_payment


@pytest.fixture
def fake():
    return FakeErpClient()


@pytest.fixture
def service(db_session, erp_configuration, fake):
    return OrderPushService(db_session, client_factory=lambda _: fake, router_factory=build_router)


@pytest.fixture
def item(make_product):
    return make_product("1001", quantity=10, reserved=2)


def reload(db_session, order):
    return db_session.query(Order).filter(Order.id == order.id).populate_existing().one()


class TestCreate:

    def test_paid_order_created_as_new_order_with_payment(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 2)], payment_status="PAID")

        result = service.sync_order(order.id)

        assert result.success is True
        assert result.action == "create"
        assert result.external_order_id == "5001"
        assert fake.methods() == ["addOrder", "setOrderPayment"]
        assert fake.params_of("addOrder")[0]["order_status_id"] == ErpOrderStatus.NEW_ORDER

        order = reload(db_session, order)
        assert order.external_order_id == "5001"
        assert order.external_push_started_at is not None
        assert order.external_synced_at is not None
        assert order.external_paid_at is not None
        assert order.external_sync_error is None

    def test_unpaid_order_is_not_pushed(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)])

        result = service.sync_order(order.id)

        assert result.success is False
        assert result.skipped is True
        assert "not paid" in result.error
        assert fake.calls == []
        assert reload(db_session, order).external_order_id is None

    def test_unpaid_order_created_as_unpaid_when_requested(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)])

        result = service.sync_order(order.id, skip_payment_check=True)

        assert result.success is True
        assert fake.methods() == ["addOrder"]
        assert fake.params_of("addOrder")[0]["order_status_id"] == ErpOrderStatus.UNPAID
        assert reload(db_session, order).external_paid_at is None

    def test_explicit_status_ignored_for_unpaid_order(self, service, fake, item, make_order):
        order = make_order([(item, 1)])

        result = service.sync_order(order.id, skip_payment_check=True, order_status_id=ErpOrderStatus.NEW_ORDER)

        assert result.success is True
        assert fake.params_of("addOrder")[0]["order_status_id"] == ErpOrderStatus.UNPAID

    def test_explicit_status_used_for_paid_order(self, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")

        service.sync_order(order.id, order_status_id=65804)

        assert fake.params_of("addOrder")[0]["order_status_id"] == 65804

    def test_second_sync_is_a_no_op(self, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")
        service.sync_order(order.id)

        result = service.sync_order(order.id)

        assert result.success is True
        assert result.skipped is True
        assert result.external_order_id == "5001"
        assert fake.methods().count("addOrder") == 1

    def test_order_not_found(self, service):
        from uuid import uuid4

        result = service.sync_order(uuid4())

        assert result.success is False
        assert result.error == "Order not found"

    def test_missing_configuration_fails_without_retry(self, db_session, fake, item, make_order):
        service = OrderPushService(db_session, client_factory=lambda _: fake, router_factory=build_router)
        order = make_order([(item, 1)], payment_status="PAID")

        result = service.sync_order(order.id)

        assert result.success is False
        assert result.retryable is False
        assert "not configured" in result.error
        assert fake.calls == []

    def test_unroutable_order_is_skipped(self, db_session, erp_configuration, fake, item, make_order):
        service = OrderPushService(
            db_session,
            client_factory=lambda _: fake,
            router_factory=lambda _: WarehouseRouter({"btp": "22953"}),
        )
        order = make_order([(item, 1)], payment_status="PAID")

        result = service.sync_order(order.id)

        assert result.success is False
        assert result.skipped is True
        assert fake.calls == []
        assert "No ERP inventory" in reload(db_session, order).external_sync_error


class TestForce:

    def test_force_requires_admin(self, service, fake, item, make_order):
        order = make_order([(item, 1)])

        result = service.sync_order(order.id, force=True, actor_role="OPS")

        assert result.success is False
        assert "ADMIN" in result.error
        assert fake.calls == []

    def test_admin_force_pushes_unpaid_order_without_stock_effect(self, service, fake, item, make_order):
        order = make_order([(item, 1)])

        result = service.sync_order(order.id, force=True, actor_role="ADMIN")

        assert result.success is True
        assert fake.params_of("addOrder")[0]["order_status_id"] == ErpOrderStatus.UNPAID
        assert "setOrderPayment" not in fake.methods()


class TestFailures:

    def test_transport_error_is_retryable_and_recorded(self, db_session, service, fake, item, make_order):
        fake.errors["addOrder"] = TransportError("addOrder failed after 5 attempts: timeout", attempts=5)
        order = make_order([(item, 1)], payment_status="PAID")

        result = service.sync_order(order.id)

        assert result.success is False
        assert result.retryable is True
        order = reload(db_session, order)
        assert order.external_order_id is None
        assert order.external_push_started_at is not None
        assert "timeout" in order.external_sync_error

    def test_api_error_is_not_retryable(self, service, fake, item, make_order):
        fake.errors["addOrder"] = ErpApiError("ERROR_BAD_TOKEN", "Invalid user token", "addOrder")
        order = make_order([(item, 1)], payment_status="PAID")

        result = service.sync_order(order.id)

        assert result.success is False
        assert result.retryable is False

    def test_payment_failure_keeps_external_id_and_sweep_completes_it(
        self, db_session, service, fake, item, make_order
    ):
        fake.errors["setOrderPayment"] = TransportError("timeout")
        order = make_order([(item, 1)], payment_status="PAID")

        result = service.sync_order(order.id)

        assert result.success is False
        assert result.action == "mark_paid"
        order = reload(db_session, order)
        assert order.external_order_id == "5001"
        assert order.external_paid_at is None

        del fake.errors["setOrderPayment"]
        summary = service.sync_pending_orders()

        assert summary == {"processed": 1, "synced": 1, "failed": 0, "skipped": 0}
        assert fake.methods().count("addOrder") == 1
        assert fake.params_of("setOrderStatus")[-1]["status_id"] == ErpOrderStatus.NEW_ORDER
        assert reload(db_session, order).external_paid_at is not None


class TestCrashRecovery:

    def test_retry_after_lost_response_reuses_erp_order(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID", external_push_started_at=utcnow())
        fake.erp_orders.append({"order_id": 7777, "admin_comments": order_marker(order.number)})

        result = service.sync_order(order.id)

        assert result.success is True
        assert result.external_order_id == "7777"
        assert "addOrder" not in fake.methods()
        assert reload(db_session, order).external_order_id == "7777"

    def test_lookup_starts_one_hour_before_order_creation(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID", external_push_started_at=utcnow())
        expected = int((as_utc(reload(db_session, order).created_at) - timedelta(hours=1)).timestamp())

        service.sync_order(order.id)

        assert fake.params_of("getOrders")[0]["date_from"] == expected

    def test_marker_must_match_exactly(self, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID", external_push_started_at=utcnow())
        fake.erp_orders.append({"order_id": 7777, "admin_comments": order_marker(order.number + "0")})

        result = service.sync_order(order.id)

        assert result.external_order_id != "7777"
        assert fake.methods().count("addOrder") == 1

    def test_marker_followed_by_package_summary_matches(self, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID", external_push_started_at=utcnow())
        fake.erp_orders.append({
            "order_id": 7777,
            "admin_comments": f"{order_marker(order.number)} | Packages: pkg-1 (btp, inventory 22953)",
        })

        assert service.sync_order(order.id).external_order_id == "7777"

    def test_first_attempt_does_not_search(self, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")

        service.sync_order(order.id)

        assert "getOrders" not in fake.methods()

    def test_retry_after_transport_error_searches_then_creates(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")
        fake.errors["addOrder"] = TransportError("timeout")
        service.sync_order(order.id)
        del fake.errors["addOrder"]

        result = service.sync_order(order.id)

        assert result.success is True
        assert fake.methods()[:3] == ["addOrder", "getOrders", "addOrder"]


class TestMarkPaid:

    def test_unpaid_erp_order_promoted_after_payment(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)])
        service.sync_order(order.id, skip_payment_check=True)
        confirm_payment(db_session, reload(db_session, order))
        db_session.commit()

        result = service.mark_order_as_paid(order.id)

        assert result.success is True
        assert fake.methods() == ["addOrder", "setOrderStatus", "setOrderPayment"]
        assert fake.params_of("setOrderStatus")[0] == {"order_id": 5001, "status_id": ErpOrderStatus.NEW_ORDER}
        assert reload(db_session, order).external_paid_at is not None

    def test_mark_paid_is_idempotent(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")
        service.sync_order(order.id)
        calls = len(fake.calls)

        result = service.mark_order_as_paid(order.id)

        assert result.skipped is True
        assert len(fake.calls) == calls

    def test_sync_of_paid_order_with_unpaid_erp_order_marks_paid(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)])
        service.sync_order(order.id, skip_payment_check=True)
        confirm_payment(db_session, reload(db_session, order))
        db_session.commit()

        result = service.sync_order(order.id)

        assert result.action == "mark_paid"
        assert fake.methods().count("addOrder") == 1

    def test_mark_paid_requires_local_payment(self, service, fake, item, make_order):
        order = make_order([(item, 1)])

        result = service.mark_order_as_paid(order.id)

        assert result.success is False
        assert result.skipped is True
        assert fake.calls == []

    def test_mark_paid_creates_missing_erp_order(self, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")

        result = service.mark_order_as_paid(order.id)

        assert result.action == "create"
        assert fake.params_of("addOrder")[0]["order_status_id"] == ErpOrderStatus.NEW_ORDER


class TestRefundAndCancel:

    def test_refund_updates_local_order_and_cancels_erp_order(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")
        service.sync_order(order.id)

        result = service.mark_order_as_refunded(order.id, reason="Customer returned")

        assert result.success is True
        assert result.action == "refund"
        order = reload(db_session, order)
        assert order.status == "REFUNDED"
        assert order.payment_status == "REFUNDED"
        assert order.external_cancelled_at is not None
        assert fake.params_of("setOrderStatus")[-1]["status_id"] == ErpOrderStatus.CANCELLED
        assert fake.params_of("setOrderFields")[-1]["admin_comments"] == (
            f"Order: {order.number} | Customer returned"
        )

    def test_second_refund_is_skipped(self, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")
        service.sync_order(order.id)
        service.mark_order_as_refunded(order.id)
        calls = len(fake.calls)

        result = service.mark_order_as_refunded(order.id)

        assert result.skipped is True
        assert len(fake.calls) == calls

    def test_refund_of_order_never_pushed_is_local_only(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)], payment_status="PAID")

        result = service.mark_order_as_refunded(order.id)

        assert result.skipped is True
        assert fake.calls == []
        assert reload(db_session, order).status == "REFUNDED"

    def test_cancel_requires_local_cancellation(self, service, fake, item, make_order):
        order = make_order([(item, 1)])
        service.sync_order(order.id, skip_payment_check=True)

        result = service.mark_order_as_cancelled(order.id)

        assert result.success is False
        assert result.skipped is True
        assert "setOrderStatus" not in fake.methods()

    def test_cancelled_order_moved_to_erp_cancelled_bucket(self, db_session, service, fake, item, make_order):
        order = make_order([(item, 1)])
        service.sync_order(order.id, skip_payment_check=True)
        cancel_order(db_session, reload(db_session, order), reason="Customer request")
        db_session.commit()

        result = service.mark_order_as_cancelled(order.id, reason="Customer request")

        assert result.success is True
        assert fake.params_of("setOrderStatus")[-1]["status_id"] == ErpOrderStatus.CANCELLED
        assert reload(db_session, order).external_cancelled_at is not None


class TestPendingSweep:

    def test_pushes_paid_orders_missing_in_erp(self, service, fake, item, make_order):
        make_order([(item, 1)], payment_status="PAID")
        make_order([(item, 1)], payment_status="PAID")
        make_order([(item, 1)])

        summary = service.sync_pending_orders()

        assert summary == {"processed": 2, "synced": 2, "failed": 0, "skipped": 0}
        assert fake.methods().count("addOrder") == 2

    def test_failures_are_counted(self, service, fake, item, make_order):
        make_order([(item, 1)], payment_status="PAID")
        fake.errors["addOrder"] = TransportError("timeout")

        summary = service.sync_pending_orders()

        assert summary["failed"] == 1

    def test_batch_size_limits_work(self, service, fake, item, make_order):
        for _ in range(3):
            make_order([(item, 1)], payment_status="PAID")

        summary = service.sync_pending_orders(batch_size=2)

        assert summary["processed"] == 2
