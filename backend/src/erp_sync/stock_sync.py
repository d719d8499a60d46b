"""
Stock sync - ERP stock levels -> local inventory

The ERP is the source of truth for owned stock. For every inventory (the
default one and each warehouse inventory) stock entries are paged in,
mapped to local variants and applied as an additive delta:

    quantity = quantity + (erp_total - local_snapshot)

so checkouts that reserve or ship stock between the read and the write are
not overwritten. Reservations are local only and never touched here.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session, selectinload

from connectors.baselinker_client import BaselinkerClient
from connectors.warehouse_router import WarehouseRouter
from models import InventoryRecord, Product, ProductVariant, SyncLog
from orders.inventory import adjust_inventory
from .runs import check_cancelled


logger = logging.getLogger(__name__)


def total_stock(stock: Optional[Mapping[str, Any]]) -> int:
    """Sum of per-warehouse quantities ({"bl_123": 5, "bl_456": "2"} -> 7)."""
    total = 0
    for quantity in (stock or {}).values():
        try:
            total += int(float(quantity))
        except (TypeError, ValueError):
            continue
    return max(total, 0)


def default_variant(product: Product) -> Optional[ProductVariant]:
    for variant in product.variants:
        if variant.is_default:
            return variant
    if len(product.variants) == 1:
        return product.variants[0]
    return None


class StockSync:
    """
    Pulls ERP stock for all inventories.

    Args:
        db: Session; committed after every page
        client: ERP client for this run
        router: Warehouse router listing the inventories
        log: SyncLog of the run (enables progress updates and cancellation)
    """

    def __init__(
        self,
        db: Session,
        client: BaselinkerClient,
        router: WarehouseRouter,
        log: Optional[SyncLog] = None,
    ):
        self.db = db
        self.client = client
        self.router = router
        self.log = log
        self.stats = {"processed": 0, "changed": 0, "skipped": 0}

    def run(self) -> Dict[str, int]:
        inventories = self.router.inventories()
        if not inventories:
            logger.warning("Stock sync has no inventories to read")

        for warehouse, inventory_id in inventories:
            logger.info(
                f"Syncing stock of inventory {inventory_id} ({warehouse or 'default'})",
                extra={"inventory_id": inventory_id}
            )
            for page in self.client.iter_inventory_products_stock(inventory_id):
                self._apply_page(warehouse, page)
                if self.log is not None:
                    self.log.items_processed = self.stats["processed"]
                    self.log.items_changed = self.stats["changed"]
                self.db.commit()
                if self.log is not None:
                    check_cancelled(self.db, self.log)

        logger.info(
            f"Stock sync: {self.stats['processed']} entries, {self.stats['changed']} changed, "
            f"{self.stats['skipped']} unknown"
        )
        return self.stats

    def _apply_page(self, warehouse: Optional[str], entries: List[Dict[str, Any]]) -> None:
        external_ids = [
            self.router.prefixed_product_id(warehouse, entry.get("product_id"))
            for entry in entries
        ]
        products = {
            product.external_product_id: product
            for product in self.db.query(Product).options(
                selectinload(Product.variants).selectinload(ProductVariant.inventory)
            ).filter(Product.external_product_id.in_(external_ids))
        }

        for external_id, entry in zip(external_ids, entries):
            self.stats["processed"] += 1
            product = products.get(external_id)
            if product is None:
                self.stats["skipped"] += 1
                continue

            variant_stock = entry.get("variants") or {}
            if variant_stock:
                variants = {v.external_variant_id: v for v in product.variants}
                for erp_variant_id, stock in variant_stock.items():
                    variant = variants.get(self.router.prefixed_product_id(warehouse, erp_variant_id))
                    if variant is None:
                        self.stats["skipped"] += 1
                        continue
                    self._apply(variant, total_stock(stock))
            else:
                variant = default_variant(product)
                if variant is None:
                    logger.warning(f"Product {external_id} has no default variant, stock skipped")
                    self.stats["skipped"] += 1
                    continue
                self._apply(variant, total_stock(entry.get("stock")))

    def _apply(self, variant: ProductVariant, erp_total: int) -> None:
        record = variant.inventory
        if record is None:
            self.db.add(InventoryRecord(variant_id=variant.id, quantity=erp_total, reserved=0))
            self.stats["changed"] += 1
            return

        delta = erp_total - (record.quantity or 0)
        if delta and adjust_inventory(self.db, variant.id, quantity_delta=delta):
            self.stats["changed"] += 1
