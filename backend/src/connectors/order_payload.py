"""
Order payload builder - local Order -> ERP addOrder parameters

Lines are grouped into packages by the ERP inventory each product is routed
to. Every package carries only its own lines and its own shipping cost; the
package costs always add up to the order's shipping_total.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .ports import UnroutableProductError
from .warehouse_router import WarehouseRouter


logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = 23

SHIPPING_METHOD_NAMES = {
    "inpost_paczkomat": "InPost Paczkomaty",
    "inpost_kurier": "InPost Kurier",
    "dpd": "DPD Kurier",
    "dhl": "DHL Kurier",
    "pocztex": "Pocztex",
    "orlen_paczka": "Orlen Paczka",
    "pickup": "Odbiór osobisty",
}

PAYMENT_METHOD_NAMES = {
    "payu": "PayU",
    "przelewy24": "Przelewy24",
    "blik": "BLIK",
    "card": "Karta płatnicza",
    "transfer": "Przelew bankowy",
    "cod": "Płatność przy odbiorze",
    "google_pay": "Google Pay",
    "apple_pay": "Apple Pay",
    "klarna": "Klarna",
    "paypo": "PayPo",
}


def shipping_method_name(code: Optional[str]) -> str:
    if not code:
        return "Kurier"
    return SHIPPING_METHOD_NAMES.get(code, code)


def payment_method_name(code: Optional[str]) -> str:
    if not code:
        return "Przelew bankowy"
    return PAYMENT_METHOD_NAMES.get(code.lower(), code)


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


@dataclass
class ErpPackage:
    """
    Lines shipped together from one ERP inventory.

    Attributes:
        package_id: Stable id within the order ("pkg-1", ...)
        inventory_id: ERP inventory the lines are taken from
        warehouse: Warehouse key (None for the default inventory)
        products: addOrder product entries for this package
        shipping_method: Shipping method code
        shipping_price: Shipping cost of this package
        parcel_locker_code: Parcel locker for this package, if any
    """
    package_id: str
    inventory_id: str
    warehouse: Optional[str] = None
    products: List[Dict[str, Any]] = field(default_factory=list)
    shipping_method: Optional[str] = None
    shipping_price: Decimal = Decimal("0.00")
    parcel_locker_code: Optional[str] = None
    parcel_locker_address: Optional[str] = None

    def summary(self) -> str:
        label = self.warehouse or "main"
        return (
            f"{self.package_id} ({label}, inventory {self.inventory_id}): "
            f"{shipping_method_name(self.shipping_method)} {self.shipping_price}"
        )


@dataclass
class ErpOrderPayload:
    """addOrder payload split into packages."""
    order_number: str
    packages: List[ErpPackage]
    base_fields: Dict[str, Any]
    discount_line: Optional[Dict[str, Any]] = None

    @property
    def shipping_total(self) -> Decimal:
        return sum((p.shipping_price for p in self.packages), Decimal("0.00"))

    def to_add_order_params(self, order_status_id: int) -> Dict[str, Any]:
        """
        ERP addOrder parameters.

        Products of every package are sent with storage_id set to the
        package's inventory, so the ERP decrements the right stock pool.
        delivery_price is the sum of package shipping costs.
        """
        products: List[Dict[str, Any]] = []
        for package in self.packages:
            products.extend(package.products)
        if self.discount_line:
            products.append(self.discount_line)

        methods = []
        for package in self.packages:
            name = shipping_method_name(package.shipping_method)
            if name not in methods:
                methods.append(name)

        params = dict(self.base_fields)
        params.update({
            "order_status_id": int(order_status_id),
            "products": products,
            "delivery_method": " + ".join(methods) if methods else shipping_method_name(None),
            "delivery_price": float(self.shipping_total),
        })

        comment = f"Order: {self.order_number}"
        if len(self.packages) > 1:
            comment += " | Packages: " + "; ".join(p.summary() for p in self.packages)
        params["admin_comments"] = comment
        return params


class OrderPayloadBuilder:
    """
    Builds ErpOrderPayload objects for local orders.

    Args:
        router: WarehouseRouter used to place every line in an inventory

    Raises (from build):
        UnroutableProductError: A line's product cannot be routed
    """

    def __init__(self, router: WarehouseRouter):
        self.router = router

    def build(self, order: Any) -> ErpOrderPayload:
        packages = self._group_lines(order)
        self._assign_shipping(order, packages)

        discount_line = None
        discount = _money(order.discount_total)
        if discount > 0:
            discount_line = {
                "storage": "db",
                "storage_id": "0",
                "name": "Rabat (kupon)",
                "sku": "DISCOUNT",
                "price_brutto": -float(discount),
                "tax_rate": DEFAULT_TAX_RATE,
                "quantity": 1,
                "weight": 0,
            }

        return ErpOrderPayload(
            order_number=order.number,
            packages=packages,
            base_fields=self._base_fields(order),
            discount_line=discount_line,
        )

    def _group_lines(self, order: Any) -> List[ErpPackage]:
        packages: Dict[str, ErpPackage] = {}
        for line in order.lines:
            variant = line.variant
            product = variant.product if variant is not None else None
            if product is None:
                raise UnroutableProductError(f"order line {line.id} ({line.sku or line.product_name})")

            inventory_id = self.router.resolve_inventory(product)
            package = packages.get(inventory_id)
            if package is None:
                package = ErpPackage(
                    package_id=f"pkg-{len(packages) + 1}",
                    inventory_id=inventory_id,
                    warehouse=self.router.warehouse_key(product),
                    shipping_method=order.shipping_method,
                )
                packages[inventory_id] = package

            raw_variant_id = self.router.raw_product_id(variant.external_variant_id)
            package.products.append({
                "storage": "bl",
                "storage_id": inventory_id,
                "product_id": self.router.raw_product_id(product.external_product_id) or "",
                "variant_id": int(raw_variant_id) if raw_variant_id else 0,
                "name": line.product_name,
                "sku": line.sku or "",
                "ean": variant.barcode or product.ean or "",
                "price_brutto": float(_money(line.unit_price)),
                "tax_rate": product.tax_rate or DEFAULT_TAX_RATE,
                "quantity": line.quantity,
                "weight": float(variant.weight or product.weight or 0),
            })
        return list(packages.values())

    def _assign_shipping(self, order: Any, packages: List[ErpPackage]) -> None:
        """Distribute shipping_total over packages."""
        if not packages:
            return

        total = _money(order.shipping_total)
        entries = order.package_shipping or []
        if len(packages) > 1 and entries:
            unmatched = list(entries)
            for package in packages:
                entry = self._match_entry(package, unmatched)
                if entry is None:
                    continue
                unmatched.remove(entry)
                package.shipping_price = _money(entry.get("price"))
                package.shipping_method = entry.get("method") or package.shipping_method
                package.parcel_locker_code = entry.get("parcel_locker_code")
                package.parcel_locker_address = entry.get("parcel_locker_address")

            assigned = sum((p.shipping_price for p in packages), Decimal("0.00"))
            if assigned != total:
                logger.warning(
                    f"Package shipping {assigned} differs from order shipping {total}, "
                    f"assigning the difference to {packages[0].package_id}",
                    extra={"order_id": str(order.id)}
                )
                packages[0].shipping_price += total - assigned
            return

        # Single package, or no per-package breakdown: the first package
        # carries the whole shipping cost
        packages[0].shipping_price = total
        packages[0].parcel_locker_code = order.parcel_locker_code
        packages[0].parcel_locker_address = order.parcel_locker_address

    def _match_entry(self, package: ErpPackage, entries: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for entry in entries:
            inventory_id = self.router.inventory_for_wholesaler(entry.get("wholesaler"))
            if inventory_id is None and not entry.get("wholesaler"):
                inventory_id = self.router.default_inventory_id
            if inventory_id == package.inventory_id:
                return entry
        return None

    def _base_fields(self, order: Any) -> Dict[str, Any]:
        shipping = order.shipping_address or {}
        fields: Dict[str, Any] = {
            "date_add": int(order.created_at.timestamp()) if order.created_at else None,
            "currency": order.currency or "PLN",
            "payment_method": payment_method_name(order.payment_method),
            "payment_method_cod": (order.payment_method or "").lower() == "cod",
            "paid": bool(order.is_paid),
            "user_comments": order.customer_notes or "",
            "email": order.customer_email or "",
            "phone": shipping.get("phone") or order.customer_phone or "",
        }

        if shipping:
            fields.update({
                "delivery_fullname": f"{shipping.get('first_name', '')} {shipping.get('last_name', '')}".strip(),
                "delivery_company": shipping.get("company_name") or "",
                "delivery_address": shipping.get("street") or "",
                "delivery_city": shipping.get("city") or "",
                "delivery_postcode": shipping.get("postal_code") or "",
                "delivery_country_code": shipping.get("country") or "PL",
            })

        if order.parcel_locker_code:
            fields.update({
                "delivery_point_id": order.parcel_locker_code,
                "delivery_point_name": order.parcel_locker_code,
                "delivery_point_address": order.parcel_locker_address or "",
            })

        billing = order.billing_address
        if billing and order.want_invoice:
            fields.update({
                "invoice_fullname": f"{billing.get('first_name', '')} {billing.get('last_name', '')}".strip(),
                "invoice_company": billing.get("company_name") or "",
                "invoice_nip": billing.get("nip") or "",
                "invoice_address": billing.get("street") or "",
                "invoice_city": billing.get("city") or "",
                "invoice_postcode": billing.get("postal_code") or "",
                "invoice_country_code": billing.get("country") or "PL",
                "want_invoice": True,
            })

        return {k: v for k, v in fields.items() if v is not None}
