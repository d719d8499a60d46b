"""Unit tests for BaselinkerClient.

HTTP is replaced by a Mock requests session; sleeps are recorded instead of
taken, so retry and Retry-After behavior is checked without waiting.
"""

import json
from unittest.mock import Mock

import pytest
import requests

from connectors.baselinker_client import BaselinkerClient
from connectors.ports import ConfigurationError, ErpApiError, TransportError
from connectors.rate_limiter import TokenBucket


API_URL = "https://erp.test/connector.php"


def make_response(status_code=200, body=None, headers=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    if body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = body
    return response


def success(**payload):
    return make_response(200, {"status": "SUCCESS", **payload})


@pytest.fixture
def http():
    return Mock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(http, sleeps):
    return BaselinkerClient(
        "token-123",
        api_url=API_URL,
        rate_limiter=TokenBucket(100000),
        http_session=http,
        retry_attempts=3,
        retry_delay_ms=1000,
        max_rate_limit_waits=2,
        default_retry_after=60,
        page_size=2,
        product_data_chunk_size=2,
        sleep=sleeps.append,
    )


class TestCall:

    def test_posts_method_and_parameters_with_token_header(self, client, http):
        http.post.return_value = success(inventories=[{"inventory_id": 11235, "name": "Main"}])

        inventories = client.get_inventories()

        assert inventories == [{"inventory_id": 11235, "name": "Main"}]
        args, kwargs = http.post.call_args
        assert args[0] == API_URL
        assert kwargs["data"]["method"] == "getInventories"
        assert json.loads(kwargs["data"]["parameters"]) == {}
        assert kwargs["headers"] == {"X-BLToken": "token-123"}

    def test_envelope_fields_are_stripped(self, client, http):
        http.post.return_value = success(order_id=42)

        assert client.call("addOrder", {"email": "a@b.pl"}) == {"order_id": 42}

    def test_rate_limited_call_waits_for_retry_after(self, client, http, sleeps):
        http.post.side_effect = [
            make_response(429, headers={"Retry-After": "5"}),
            success(statuses=[]),
        ]

        client.get_order_status_list()

        assert sleeps == [5.0]
        assert http.post.call_count == 2

    def test_retry_after_http_date_in_the_past_waits_zero(self, client, http, sleeps):
        http.post.side_effect = [
            make_response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
            success(statuses=[]),
        ]

        client.get_order_status_list()

        assert sleeps == [0.0]

    def test_rate_limit_waits_do_not_use_retry_attempts(self, client, http, sleeps):
        http.post.side_effect = [
            make_response(429, headers={"Retry-After": "1"}),
            make_response(503),
            make_response(429, headers={"Retry-After": "1"}),
            make_response(503),
            success(statuses=[]),
        ]

        client.get_order_status_list()

        assert sleeps == [1.0, 1.0, 1.0, 2.0]

    def test_rate_limit_budget_exhausted(self, client, http, sleeps):
        http.post.return_value = make_response(429)

        with pytest.raises(TransportError) as exc_info:
            client.get_order_status_list()

        assert exc_info.value.status_code == 429
        assert sleeps == [60.0, 60.0]

    def test_server_errors_back_off_exponentially(self, client, http, sleeps):
        http.post.side_effect = [make_response(502), make_response(503), success(statuses=[])]

        client.get_order_status_list()

        assert sleeps == [1.0, 2.0]

    def test_server_errors_exhaust_retries(self, client, http, sleeps):
        http.post.return_value = make_response(500)

        with pytest.raises(TransportError) as exc_info:
            client.get_order_status_list()

        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 500
        assert http.post.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_network_errors_are_retried(self, client, http, sleeps):
        http.post.side_effect = [requests.ConnectionError("connection reset"), success(statuses=[])]

        client.get_order_status_list()

        assert sleeps == [1.0]

    def test_error_envelope_raises_without_retry(self, client, http, sleeps):
        http.post.return_value = make_response(200, {
            "status": "ERROR",
            "error_code": "ERROR_BAD_TOKEN",
            "error_message": "Invalid user token",
        })

        with pytest.raises(ErpApiError) as exc_info:
            client.get_inventories()

        assert exc_info.value.code == "ERROR_BAD_TOKEN"
        assert exc_info.value.method == "getInventories"
        assert http.post.call_count == 1
        assert sleeps == []

    def test_client_error_status_raises_without_retry(self, client, http):
        http.post.return_value = make_response(400, text="Bad request")

        with pytest.raises(ErpApiError) as exc_info:
            client.get_inventories()

        assert exc_info.value.code == "HTTP_400"
        assert http.post.call_count == 1

    def test_invalid_json_raises_api_error(self, client, http):
        http.post.return_value = make_response(200, body=None, text="<html>")

        with pytest.raises(ErpApiError) as exc_info:
            client.get_inventories()

        assert exc_info.value.code == "INVALID_RESPONSE"

    def test_empty_token_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            BaselinkerClient("", rate_limiter=TokenBucket(10))


class TestPagination:

    def test_stock_pages_until_short_page(self, client, http):
        http.post.side_effect = [
            success(products={"1": {"product_id": 1}, "2": {"product_id": 2}}),
            success(products={"3": {"product_id": 3}}),
        ]

        entries = client.get_inventory_products_stock("11235")

        assert [e["product_id"] for e in entries] == [1, 2, 3]
        pages = [json.loads(c.kwargs["data"]["parameters"]) for c in http.post.call_args_list]
        assert pages == [
            {"inventory_id": 11235, "page": 1},
            {"inventory_id": 11235, "page": 2},
        ]

    def test_iter_pages_yields_one_page_at_a_time(self, client, http):
        http.post.side_effect = [
            success(products={"1": {"product_id": 1}, "2": {"product_id": 2}}),
            success(products={}),
        ]

        pages = list(client.iter_inventory_products_stock("11235"))

        assert len(pages) == 2
        assert pages[1] == []

    def test_products_data_requested_in_chunks(self, client, http):
        http.post.side_effect = [
            success(products={"1": {"sku": "A"}, "2": {"sku": "B"}}),
            success(products={"3": {"sku": "C"}}),
        ]

        data = client.get_inventory_products_data("11235", [1, 2, 3])

        assert sorted(data) == ["1", "2", "3"]
        chunks = [json.loads(c.kwargs["data"]["parameters"])["products"] for c in http.post.call_args_list]
        assert chunks == [[1, 2], [3]]

    def test_orders_paged_by_id_from(self, client, http):
        first = [{"order_id": i} for i in range(1, 101)]
        http.post.side_effect = [success(orders=first), success(orders=[{"order_id": 101}])]

        orders = client.get_orders(include_unconfirmed=False)

        assert len(orders) == 101
        second_params = json.loads(http.post.call_args_list[1].kwargs["data"]["parameters"])
        assert second_params["id_from"] == 101
        assert second_params["get_unconfirmed_orders"] is False


class TestOrderMethods:

    def test_add_order_returns_id_as_string(self, client, http):
        http.post.return_value = success(order_id=123456)

        assert client.add_order({"order_status_id": 65342}) == "123456"

    def test_add_order_without_id_is_an_error(self, client, http):
        http.post.return_value = success()

        with pytest.raises(ErpApiError) as exc_info:
            client.add_order({})

        assert exc_info.value.code == "MISSING_ORDER_ID"

    def test_set_order_status_sends_integers(self, client, http):
        http.post.return_value = success()

        client.set_order_status("123456", 65816)

        params = json.loads(http.post.call_args.kwargs["data"]["parameters"])
        assert params == {"order_id": 123456, "status_id": 65816}
