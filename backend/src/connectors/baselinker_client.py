"""
BaselinkerClient - Rate-limited adapter for the ERP remote procedure endpoint

Every ERP request goes through BaselinkerClient.call():
- a token is taken from the process-wide TokenBucket before each HTTP attempt
- HTTP 429 waits for Retry-After and repeats the call without using up a retry
- HTTP 5xx and network errors back off exponentially (base * 2^attempt)
- an ERROR envelope or a non-retryable 4xx raises ErpApiError immediately

Wire format: POST form fields `method` and `parameters` (JSON), token in the
X-BLToken header; response envelope {status, error_code?, error_message?, ...}.
"""

import json
import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import requests

from config import get_settings
from observability.metrics import erp_calls_total, erp_call_latency_ms
from .ports import ErpClientPort, ErpApiError, TransportError, ConfigurationError
from .rate_limiter import TokenBucket, get_rate_limiter


logger = logging.getLogger(__name__)

ENVELOPE_FIELDS = ("status", "error_code", "error_message")
ORDERS_PAGE_SIZE = 100


def _chunks(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BaselinkerClient(ErpClientPort):
    """
    ERP client with throttling, retry and pagination.

    One instance is built per operation with a just-decrypted token; the token
    bucket is shared across instances.

    Args:
        api_token: Plaintext API token (kept only on this instance)
        api_url: Endpoint URL (default from settings)
        rate_limiter: Token bucket (default: process-wide instance)
        http_session: requests.Session to use (default: new session)
        sleep: Sleep function for backoff and Retry-After waits

    Example:
        client = BaselinkerClient(token)
        inventories = client.get_inventories()
    """

    def __init__(
        self,
        api_token: str,
        api_url: Optional[str] = None,
        rate_limiter: Optional[TokenBucket] = None,
        http_session: Optional[requests.Session] = None,
        retry_attempts: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        max_rate_limit_waits: Optional[int] = None,
        default_retry_after: Optional[int] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        product_data_chunk_size: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not api_token:
            raise ConfigurationError("ERP API token is empty")

        settings = get_settings()
        self._api_token = api_token
        self.api_url = api_url or settings.ERP_API_URL
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.http = http_session or requests.Session()
        self.retry_attempts = retry_attempts if retry_attempts is not None else settings.ERP_RETRY_ATTEMPTS
        self.retry_delay_base = (
            retry_delay_ms if retry_delay_ms is not None else settings.ERP_RETRY_DELAY_MS
        ) / 1000.0
        self.max_rate_limit_waits = (
            max_rate_limit_waits if max_rate_limit_waits is not None else settings.ERP_MAX_RATE_LIMIT_WAITS
        )
        self.default_retry_after = (
            default_retry_after if default_retry_after is not None else settings.ERP_DEFAULT_RETRY_AFTER_SECONDS
        )
        self.timeout = timeout or settings.ERP_REQUEST_TIMEOUT_SECONDS
        self.page_size = page_size or settings.ERP_PAGE_SIZE
        self.product_data_chunk_size = product_data_chunk_size or settings.ERP_PRODUCT_DATA_CHUNK_SIZE
        self._sleep = sleep

    def call(self, method: str, parameters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Invoke an ERP method with throttling and retries.

        Args:
            method: ERP method name
            parameters: JSON-serializable parameters

        Returns:
            Response payload without status/error_code/error_message

        Raises:
            ErpApiError: ERP rejected the request (never retried)
            TransportError: 5xx/network retries or 429 waits exhausted
        """
        form = {"method": method, "parameters": json.dumps(parameters or {})}
        headers = {"X-BLToken": self._api_token}

        failures = 0
        rate_limit_waits = 0
        while True:
            self.rate_limiter.acquire()

            start_time = time.time()
            status_code = None
            try:
                response = self.http.post(self.api_url, data=form, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                error = f"{type(e).__name__}: {e}"
            else:
                status_code = response.status_code
                erp_call_latency_ms.labels(method=method).observe((time.time() - start_time) * 1000)

                if status_code == 429:
                    rate_limit_waits += 1
                    erp_calls_total.labels(method=method, outcome="rate_limited").inc()
                    if rate_limit_waits > self.max_rate_limit_waits:
                        raise TransportError(
                            f"{method}: still rate limited after {rate_limit_waits - 1} waits",
                            attempts=failures + rate_limit_waits,
                            status_code=429,
                        )
                    wait = self._retry_after_seconds(response)
                    logger.warning(
                        f"ERP rate limit hit on {method}, retrying in {wait}s",
                        extra={"erp_method": method, "attempt": rate_limit_waits}
                    )
                    self._sleep(wait)
                    continue

                if status_code >= 500:
                    error = f"HTTP {status_code}"
                elif status_code >= 400:
                    erp_calls_total.labels(method=method, outcome="api_error").inc()
                    raise ErpApiError(f"HTTP_{status_code}", response.text[:500], method)
                else:
                    return self._unwrap(method, response)

            failures += 1
            if failures >= self.retry_attempts:
                erp_calls_total.labels(method=method, outcome="transport_error").inc()
                logger.error(
                    f"ERP call {method} failed after {failures} attempts: {error}",
                    extra={"erp_method": method, "attempt": failures}
                )
                raise TransportError(
                    f"{method} failed after {failures} attempts: {error}",
                    attempts=failures,
                    status_code=status_code,
                )

            delay = self.retry_delay_base * (2 ** (failures - 1))
            erp_calls_total.labels(method=method, outcome="retry").inc()
            logger.warning(
                f"ERP call {method} failed ({error}), retrying in {delay}s",
                extra={"erp_method": method, "attempt": failures}
            )
            self._sleep(delay)

    def _unwrap(self, method: str, response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            erp_calls_total.labels(method=method, outcome="api_error").inc()
            raise ErpApiError("INVALID_RESPONSE", "ERP response is not valid JSON", method)

        if not isinstance(body, dict) or body.get("status") != "SUCCESS":
            body = body if isinstance(body, dict) else {}
            code = body.get("error_code") or "UNKNOWN_ERROR"
            message = body.get("error_message") or "Unknown error"
            erp_calls_total.labels(method=method, outcome="api_error").inc()
            logger.error(
                f"ERP rejected {method}: {code} {message}",
                extra={"erp_method": method}
            )
            raise ErpApiError(code, message, method)

        erp_calls_total.labels(method=method, outcome="success").inc()
        return {k: v for k, v in body.items() if k not in ENVELOPE_FIELDS}

    def _retry_after_seconds(self, response: requests.Response) -> float:
        header = response.headers.get("Retry-After")
        if not header:
            return float(self.default_retry_after)
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
        try:
            retry_at = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            return float(self.default_retry_after)
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())

    # Inventory (catalog) methods

    def get_inventories(self) -> List[Dict[str, Any]]:
        return self.call("getInventories").get("inventories") or []

    def get_inventory_categories(self, inventory_id: str) -> List[Dict[str, Any]]:
        response = self.call("getInventoryCategories", {"inventory_id": int(inventory_id)})
        return response.get("categories") or []

    def get_inventory_products_list(
        self,
        inventory_id: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """All product list entries of an inventory (paginated)."""
        params = {"inventory_id": int(inventory_id)}
        params.update(filters or {})
        return self.paginate("getInventoryProductsList", params, "products", self.page_size)

    def get_inventory_products_data(self, inventory_id: str, product_ids: List[Any]) -> Dict[str, Dict[str, Any]]:
        """Detailed product data keyed by product id, fetched in chunks."""
        products: Dict[str, Dict[str, Any]] = {}
        ids = [int(pid) for pid in product_ids]
        for chunk in _chunks(ids, self.product_data_chunk_size):
            response = self.call(
                "getInventoryProductsData",
                {"inventory_id": int(inventory_id), "products": chunk},
            )
            for product_id, data in (response.get("products") or {}).items():
                products[str(product_id)] = data
        return products

    def get_inventory_products_stock(self, inventory_id: str) -> List[Dict[str, Any]]:
        """All stock entries of an inventory (paginated)."""
        return [entry for page in self.iter_inventory_products_stock(inventory_id) for entry in page]

    def iter_inventory_products_stock(self, inventory_id: str) -> Iterator[List[Dict[str, Any]]]:
        """
        Stock entries of an inventory, one page at a time.

        Each entry: {product_id, stock: {warehouse: qty}, reservations: {...},
        variants: {variant_id: {warehouse: qty}}}
        """
        return self.iter_pages(
            "getInventoryProductsStock",
            {"inventory_id": int(inventory_id)},
            "products",
            self.page_size,
        )

    # Order methods

    def add_order(self, order_params: Dict[str, Any]) -> str:
        response = self.call("addOrder", order_params)
        order_id = response.get("order_id")
        if not order_id:
            raise ErpApiError("MISSING_ORDER_ID", "addOrder response has no order_id", "addOrder")
        return str(order_id)

    def set_order_status(self, order_id: str, status_id: int) -> None:
        self.call("setOrderStatus", {"order_id": int(order_id), "status_id": int(status_id)})

    def set_order_payment(
        self,
        order_id: str,
        payment_done: float,
        payment_date: datetime,
        payment_comment: str = "",
    ) -> None:
        self.call("setOrderPayment", {
            "order_id": int(order_id),
            "payment_done": float(payment_done),
            "payment_date": int(payment_date.timestamp()),
            "payment_comment": payment_comment,
        })

    def set_order_fields(self, order_id: str, **fields: Any) -> None:
        params = {"order_id": int(order_id)}
        params.update(fields)
        self.call("setOrderFields", params)

    def get_orders(
        self,
        date_from: Optional[datetime] = None,
        order_id: Optional[str] = None,
        include_unconfirmed: bool = True,
        date_confirmed_from: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Orders added since date_from and/or confirmed since date_confirmed_from
        (or a single order), paged by id_from.

        getOrders returns at most 100 orders per call; the next page starts
        after the highest order id seen.
        """
        params: Dict[str, Any] = {"get_unconfirmed_orders": include_unconfirmed}
        if order_id is not None:
            params["order_id"] = int(order_id)
            return self.call("getOrders", params).get("orders") or []
        if date_from is not None:
            params["date_from"] = int(date_from.timestamp())
        if date_confirmed_from is not None:
            params["date_confirmed_from"] = int(date_confirmed_from.timestamp())

        orders: List[Dict[str, Any]] = []
        while True:
            batch = self.call("getOrders", params).get("orders") or []
            orders.extend(batch)
            if len(batch) < ORDERS_PAGE_SIZE:
                return orders
            params["id_from"] = max(int(o["order_id"]) for o in batch) + 1

    def get_order_status_list(self) -> List[Dict[str, Any]]:
        return self.call("getOrderStatusList").get("statuses") or []
