"""
ErpClientPort - Port interface for the ERP remote procedure endpoint

Domain services (outbound order push, inbound sync) depend only on this Port,
never on the HTTP transport. The concrete adapter is BaselinkerClient; tests
substitute in-memory fakes.

Also defines the ERP error taxonomy and the result structures returned by
outbound operations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional


class ErpError(Exception):
    """Base exception for ERP integration errors."""
    pass


class ConfigurationError(ErpError):
    """
    Missing or malformed ERP credentials, master key or inventory id.

    Fatal for the current operation: surfaced to the admin UI, never retried.
    """
    pass


class CredentialIntegrityError(ConfigurationError):
    """Raised when an encrypted credential fails authentication (tampered or wrong key)."""
    pass


class ErpApiError(ErpError):
    """
    The ERP rejected the request (status != SUCCESS, or a non-retryable 4xx).

    Never retried: resending the same request cannot change the outcome.

    Attributes:
        code: ERP error code (e.g. 'ERROR_BAD_TOKEN')
        message: ERP error message
        method: ERP method that was called
    """

    def __init__(self, code: str, message: str, method: Optional[str] = None):
        self.code = code
        self.message = message
        self.method = method
        super().__init__(f"ERP API error {code}: {message}" + (f" (method={method})" if method else ""))


class TransportError(ErpError):
    """
    Network failure, timeout, or 5xx after the retry budget was exhausted.

    Attributes:
        attempts: Number of HTTP attempts made
        status_code: Last HTTP status code, if any
    """

    def __init__(self, message: str, attempts: int = 0, status_code: Optional[int] = None):
        self.attempts = attempts
        self.status_code = status_code
        super().__init__(message)


class UnroutableProductError(ErpError):
    """
    No warehouse mapping and no default inventory for a product.

    Callers skip the affected item/order with a warning instead of guessing
    a warehouse, and never abort a whole batch because of it.
    """

    def __init__(self, product_ref: str):
        self.product_ref = product_ref
        super().__init__(f"No ERP inventory configured for product {product_ref}")


@dataclass
class OrderSyncResult:
    """
    Result of an outbound order operation.

    Outbound operations report failures through this structure instead of
    raising, so payment and checkout flows are never interrupted by the ERP.

    Attributes:
        success: Whether the operation succeeded (or was an idempotent no-op)
        order_id: Local order id
        external_order_id: ERP order id, when known
        error: Human-readable error if success=False
        skipped: True when nothing had to be done
        action: Which ERP action was performed (create/mark_paid/refund/cancel/none)
        retryable: True when the failure was transient (TransportError)
    """
    success: bool
    order_id: Optional[str] = None
    external_order_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False
    action: str = "none"
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "order_id": self.order_id,
            "external_order_id": self.external_order_id,
            "error": self.error,
            "skipped": self.skipped,
            "action": self.action,
            "retryable": self.retryable,
        }


@dataclass
class ConnectionTestResult:
    """
    Result of an ERP connection test.

    Attributes:
        success: Whether the ERP accepted the token
        error_message: Error if success=False
        latency_ms: Time taken in milliseconds
        inventories: Inventories visible to the token
        test_timestamp: When the test was performed
    """
    success: bool
    error_message: Optional[str] = None
    latency_ms: int = 0
    inventories: List[Dict[str, Any]] = None
    test_timestamp: datetime = None

    def __post_init__(self):
        if self.inventories is None:
            self.inventories = []
        if self.test_timestamp is None:
            self.test_timestamp = datetime.now(timezone.utc)


class ErpClientPort(ABC):
    """
    Abstract interface for the ERP remote procedure endpoint.

    call() is the single chokepoint for ERP traffic. paginate() is built on
    top of it for list-style methods.
    """

    @abstractmethod
    def call(self, method: str, parameters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Invoke an ERP method.

        Args:
            method: ERP method name (e.g. 'addOrder')
            parameters: JSON-serializable parameters

        Returns:
            Response payload without the status/error envelope fields

        Raises:
            ErpApiError: ERP answered with status != SUCCESS
            TransportError: network/5xx retries exhausted
        """
        pass

    def iter_pages(
        self,
        method: str,
        parameters: Optional[Dict[str, Any]],
        result_key: str,
        page_size: int,
        max_pages: int = 10000,
    ) -> Iterator[List[Any]]:
        """
        Yield the entries of a page-numbered list method, one page at a time.

        Pages are requested as parameters['page'] = 1, 2, ... until a page
        returns fewer than page_size entries. Mapping results ({id: entry})
        are flattened to their values.
        """
        for page in range(1, max_pages + 1):
            params = dict(parameters or {})
            params["page"] = page
            response = self.call(method, params)
            entries = response.get(result_key) or []
            if isinstance(entries, dict):
                entries = list(entries.values())
            yield entries
            if len(entries) < page_size:
                return

    def paginate(
        self,
        method: str,
        parameters: Optional[Dict[str, Any]],
        result_key: str,
        page_size: int,
        max_pages: int = 10000,
    ) -> List[Any]:
        """Flattened list of entries across all pages."""
        results: List[Any] = []
        for entries in self.iter_pages(method, parameters, result_key, page_size, max_pages):
            results.extend(entries)
        return results
