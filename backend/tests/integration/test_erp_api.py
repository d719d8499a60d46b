"""Integration tests for the ERP admin API (/api/v1/erp).

ERP traffic and Celery are replaced at the router seams; everything else
(auth, validation, database, services) runs for real.
"""

from unittest.mock import Mock, patch
from uuid import uuid4

import pytest

from conftest import TEST_API_TOKEN
from connectors.ports import ConnectionTestResult, TransportError
from erp_sync.runs import start_run
from fixtures.erp import FakeErpClient
from models import ERPConfiguration, SyncLog, SyncType


pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def no_broker():
    with patch("erp_sync.service._enqueue_run") as enqueue_run, \
            patch("erp_sync.router.enqueue_order_push", return_value=Mock(id="task-1")) as enqueue_push, \
            patch("erp_sync.router.sync_pending_orders_task") as sweep_task:
        sweep_task.delay.return_value = Mock(id="task-sweep")
        yield {"run": enqueue_run, "push": enqueue_push, "sweep": sweep_task}


@pytest.fixture
def fake_erp():
    fake = FakeErpClient()
    with patch("erp_sync.router.build_client", return_value=fake):
        yield fake


class TestAuth:

    def test_missing_token_rejected(self, client):
        response = client.get("/api/v1/erp/sync/status")

        assert response.status_code in (401, 403)

    def test_garbage_token_rejected(self, client):
        response = client.get("/api/v1/erp/sync/status", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_viewer_cannot_trigger_sync(self, viewer_client, erp_configuration):
        response = viewer_client.post("/api/v1/erp/sync", json={"type": "stock"})

        assert response.status_code == 403


class TestConfiguration:

    def test_save_masks_token(self, integrator_client, db_session):
        response = integrator_client.put("/api/v1/erp/config", json={
            "api_token": TEST_API_TOKEN,
            "inventory_id": "11235",
            "sync_interval_minutes": 30,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["api_token_masked"] == "4000123-...IJKL"
        assert body["inventory_id"] == "11235"
        assert body["sync_interval_minutes"] == 30
        assert TEST_API_TOKEN not in response.text
        stored = db_session.query(ERPConfiguration).one()
        assert TEST_API_TOKEN not in stored.token_ciphertext

    def test_save_updates_same_inventory(self, integrator_client, db_session, erp_configuration):
        response = integrator_client.put("/api/v1/erp/config", json={
            "api_token": "5000999-5000111-ZYXWVUTSRQPO",
            "inventory_id": "11235",
        })

        assert response.status_code == 200
        assert response.json()["api_token_masked"] == "5000999-...RQPO"
        assert db_session.query(ERPConfiguration).count() == 1

    def test_non_numeric_inventory_rejected(self, integrator_client):
        response = integrator_client.put("/api/v1/erp/config", json={
            "api_token": TEST_API_TOKEN,
            "inventory_id": "main",
        })

        assert response.status_code == 422

    def test_ops_cannot_configure(self, ops_client):
        response = ops_client.put("/api/v1/erp/config", json={
            "api_token": TEST_API_TOKEN,
            "inventory_id": "11235",
        })

        assert response.status_code == 403

    def test_get_config(self, admin_client, erp_configuration):
        response = admin_client.get("/api/v1/erp/config")

        assert response.status_code == 200
        assert response.json()["api_token_masked"] == "4000123-...IJKL"

    def test_get_config_not_configured(self, admin_client):
        assert admin_client.get("/api/v1/erp/config").status_code == 404

    def test_disable(self, integrator_client, erp_configuration):
        response = integrator_client.post("/api/v1/erp/config/disable")

        assert response.status_code == 200
        assert response.json()["sync_enabled"] is False
        assert integrator_client.get("/api/v1/erp/config").json()["sync_enabled"] is False

    def test_connection_test(self, integrator_client):
        result = ConnectionTestResult(success=True, latency_ms=42, inventories=[{"inventory_id": 11235}])

        with patch("erp_sync.router.check_connection", return_value=result) as check:
            response = integrator_client.post("/api/v1/erp/config/test", json={"api_token": TEST_API_TOKEN})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["inventories"] == [{"inventory_id": 11235}]
        assert check.call_args.kwargs["api_token"] == TEST_API_TOKEN


class TestSyncRuns:

    def test_trigger_returns_202(self, ops_client, erp_configuration, no_broker, db_session):
        response = ops_client.post("/api/v1/erp/sync", json={"type": "stock"})

        assert response.status_code == 202
        body = response.json()
        assert body["sync_type"] == "STOCK"
        assert body["status"] == "RUNNING"
        log = db_session.query(SyncLog).one()
        assert log.triggered_by == "admin:ops@shop.test"
        no_broker["run"].assert_called_once_with(log.id)

    def test_trigger_products_with_mode(self, integrator_client, erp_configuration, db_session):
        response = integrator_client.post("/api/v1/erp/sync", json={"type": "products", "mode": "new_only"})

        assert response.status_code == 202
        assert db_session.query(SyncLog).one().mode == "new_only"

    def test_second_trigger_conflicts(self, ops_client, erp_configuration):
        ops_client.post("/api/v1/erp/sync", json={"type": "stock"})

        response = ops_client.post("/api/v1/erp/sync", json={"type": "stock"})

        assert response.status_code == 409

    def test_trigger_without_configuration(self, ops_client):
        response = ops_client.post("/api/v1/erp/sync", json={"type": "stock"})

        assert response.status_code == 400

    def test_unknown_type_rejected(self, ops_client, erp_configuration):
        response = ops_client.post("/api/v1/erp/sync", json={"type": "everything"})

        assert response.status_code == 422

    def test_status(self, viewer_client, erp_configuration, db_session):
        log = start_run(db_session, SyncType.STOCK)

        response = viewer_client.get("/api/v1/erp/sync/status")

        assert response.status_code == 200
        body = response.json()
        assert body["configured"] is True
        assert body["current_sync"]["id"] == str(log.id)

    def test_logs_filtered_by_type(self, viewer_client, db_session):
        start_run(db_session, SyncType.STOCK)
        start_run(db_session, SyncType.PRODUCTS)

        response = viewer_client.get("/api/v1/erp/sync/logs", params={"sync_type": "STOCK"})

        assert response.status_code == 200
        assert [log["sync_type"] for log in response.json()] == ["STOCK"]

    def test_cancel(self, ops_client, db_session):
        log = start_run(db_session, SyncType.STOCK)

        response = ops_client.post(f"/api/v1/erp/sync/logs/{log.id}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

    def test_cancel_unknown(self, ops_client):
        assert ops_client.post(f"/api/v1/erp/sync/logs/{uuid4()}/cancel").status_code == 404

    def test_stuck_runs_listed(self, viewer_client, db_session):
        start_run(db_session, SyncType.STOCK)

        response = viewer_client.get("/api/v1/erp/sync/stuck", params={"older_than_minutes": 60})

        assert response.status_code == 200
        assert response.json() == []


class TestOrders:

    def test_push_enqueues_sync(self, ops_client, no_broker, make_product, make_order):
        order = make_order([(make_product(), 1)], payment_status="PAID")

        response = ops_client.post(f"/api/v1/erp/orders/{order.id}/push", json={})

        assert response.status_code == 202
        assert response.json() == {"status": "enqueued", "task_id": "task-1", "order_id": str(order.id)}
        no_broker["push"].assert_called_once_with(order.id, action="sync", actor_role="OPS")

    def test_force_push_requires_admin(self, ops_client, no_broker, make_product, make_order):
        order = make_order([(make_product(), 1)])

        response = ops_client.post(f"/api/v1/erp/orders/{order.id}/push", json={"force": True})

        assert response.status_code == 403
        no_broker["push"].assert_not_called()

    def test_admin_force_push(self, admin_client, no_broker, make_product, make_order):
        order = make_order([(make_product(), 1)])

        response = admin_client.post(f"/api/v1/erp/orders/{order.id}/push", json={"force": True})

        assert response.status_code == 202
        no_broker["push"].assert_called_once_with(order.id, action="force", actor_role="ADMIN")

    def test_push_unknown_order(self, ops_client):
        assert ops_client.post(f"/api/v1/erp/orders/{uuid4()}/push", json={}).status_code == 404

    def test_sync_pending(self, ops_client, no_broker):
        response = ops_client.post("/api/v1/erp/orders/sync-pending")

        assert response.status_code == 202
        assert response.json()["task_id"] == "task-sweep"
        no_broker["sweep"].delay.assert_called_once_with()

    def test_status_sync(self, ops_client, erp_configuration, fake_erp, make_product, make_order):
        order = make_order([(make_product(), 1)], payment_status="PAID", external_order_id="5001")
        fake_erp.erp_orders.append({"order_id": 5001, "order_status_id": 65344})

        response = ops_client.post(f"/api/v1/erp/orders/{order.id}/status-sync")

        assert response.status_code == 200
        assert response.json() == {"changed": True, "status": "SHIPPED", "erp_status_id": 65344}

    def test_status_sync_erp_failure(self, ops_client, erp_configuration, fake_erp, make_product, make_order):
        order = make_order([(make_product(), 1)], payment_status="PAID", external_order_id="5001")
        fake_erp.errors["getOrders"] = TransportError("getOrders failed after 5 attempts")

        response = ops_client.post(f"/api/v1/erp/orders/{order.id}/status-sync")

        assert response.status_code == 502

    def test_status_sync_unknown_order(self, ops_client, erp_configuration, fake_erp):
        assert ops_client.post(f"/api/v1/erp/orders/{uuid4()}/status-sync").status_code == 404

    def test_status_sync_not_configured(self, ops_client, make_product, make_order):
        order = make_order([(make_product(), 1)])

        assert ops_client.post(f"/api/v1/erp/orders/{order.id}/status-sync").status_code == 400

    def test_order_status_list(self, viewer_client, erp_configuration, fake_erp):
        fake_erp.responses["getOrderStatusList"] = {"statuses": [
            {"id": 65342, "name": "Nowe zamówienie", "color": "#00ff00"},
            {"id": 424242, "name": "Custom"},
        ]}

        response = viewer_client.get("/api/v1/erp/order-statuses")

        assert response.status_code == 200
        assert response.json() == [
            {"id": 65342, "name": "Nowe zamówienie", "color": "#00ff00", "local_status": "CONFIRMED"},
            {"id": 424242, "name": "Custom", "color": None, "local_status": None},
        ]


def test_metrics_endpoint(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "shop_erp_calls_total" in response.text


def test_request_id_is_echoed(viewer_client):
    response = viewer_client.get("/api/v1/erp/sync/status", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_health_reports_components(client, erp_configuration):
    from observability.health import ComponentHealth, HealthStatus

    broker = ComponentHealth(status=HealthStatus.HEALTHY, message="Broker connection OK", latency_ms=1.0)
    with patch("observability.router.check_broker_health", return_value=broker):
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert set(body["components"]) == {"database", "broker", "erp_configuration"}
