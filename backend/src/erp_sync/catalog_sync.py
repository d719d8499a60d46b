"""
Catalog sync - ERP categories, products, variants and images -> local catalog

Products are read from every inventory the warehouse router knows. Products
of a warehouse inventory are stored with the warehouse prefix
("btp-48213"), so ids stay unique across inventories and the router can
place them again when an order is pushed.
"""

import logging
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from connectors.baselinker_client import BaselinkerClient
from connectors.warehouse_router import WarehouseRouter
from models import Category, InventoryRecord, Product, ProductImage, ProductVariant, SyncLog, SyncMode
from .runs import check_cancelled, record_error


logger = logging.getLogger(__name__)

# Polish letters that do not decompose under NFKD
_TRANSLITERATION = str.maketrans({"ł": "l", "Ł": "L"})


def slugify(text: Optional[str]) -> str:
    """'Kable i Przewody' -> 'kable-i-przewody'"""
    if not text:
        return ""
    text = unicodedata.normalize("NFKD", str(text).translate(_TRANSLITERATION))
    text = text.encode("ascii", "ignore").decode("ascii").lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    return text.strip("-")


def _text_field(data: Dict[str, Any], name: str) -> Optional[str]:
    fields = data.get("text_fields") or {}
    for key in (name, f"{name}|pl"):
        if fields.get(key):
            return fields[key]
    return data.get(name)


def _price(data: Dict[str, Any]) -> Optional[Decimal]:
    prices = data.get("prices") or {}
    value = next(iter(prices.values()), None) if isinstance(prices, dict) else None
    if value is None:
        value = data.get("price_brutto")
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _image_urls(data: Dict[str, Any]) -> List[str]:
    images = data.get("images") or {}
    if isinstance(images, list):
        return [url for url in images if url]
    return [images[key] for key in sorted(images, key=lambda k: int(k)) if images[key]]


class CatalogSync:
    """
    Categories, products and images from the ERP.

    Args:
        db: Session; committed per chunk of products
        client: ERP client for this run
        router: Warehouse router listing the inventories
        log: SyncLog of the run, if any
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

    # Categories

    def sync_categories(self) -> Dict[str, int]:
        """Upsert categories by external id, then link parents."""
        seen: Dict[str, Dict[str, Any]] = {}
        for _, inventory_id in self.router.inventories():
            for entry in self.client.get_inventory_categories(inventory_id):
                seen.setdefault(str(entry.get("category_id")), entry)

        existing = {
            c.external_category_id: c
            for c in self.db.query(Category).filter(Category.external_category_id.in_(list(seen)))
        }

        for external_id, entry in seen.items():
            self.stats["processed"] += 1
            name = entry.get("name") or f"Category {external_id}"
            category = existing.get(external_id)
            if category is None:
                category = Category(
                    external_category_id=external_id,
                    name=name,
                    slug=self._unique_category_slug(slugify(name) or f"category-{external_id}"),
                )
                self.db.add(category)
                existing[external_id] = category
                self.stats["changed"] += 1
            elif category.name != name:
                category.name = name
                category.slug = self._unique_category_slug(slugify(name) or f"category-{external_id}", category)
                self.stats["changed"] += 1
            self.db.flush()

        for external_id, entry in seen.items():
            parent_id = str(entry.get("parent_id") or "0")
            parent = existing.get(parent_id) if parent_id != "0" else None
            category = existing[external_id]
            wanted = parent.id if parent is not None else None
            if category.parent_id != wanted:
                category.parent_id = wanted

        self.db.commit()
        self._update_log()
        logger.info(f"Category sync: {len(seen)} categories")
        return self.stats

    def _unique_category_slug(self, base: str, category: Optional[Category] = None) -> str:
        slug, counter = base, 1
        while True:
            clash = self.db.query(Category).filter(Category.slug == slug).first()
            if clash is None or clash is category:
                return slug
            counter += 1
            slug = f"{base}-{counter}"

    # Products

    def sync_products(self, mode: Optional[str] = None) -> Dict[str, int]:
        """
        Upsert products, variants and inventory rows.

        Args:
            mode: new_only (skip existing products), update_only (skip new
                products) or None for both
        """
        mode = SyncMode(mode) if mode else None
        categories = {
            c.external_category_id: c.id
            for c in self.db.query(Category.external_category_id, Category.id)
        }

        for warehouse, inventory_id in self.router.inventories():
            listed = self.client.get_inventory_products_list(inventory_id)
            ids = [entry.get("id") for entry in listed if entry.get("id") is not None]
            logger.info(
                f"Product sync: {len(ids)} products in inventory {inventory_id} ({warehouse or 'default'})",
                extra={"inventory_id": inventory_id}
            )

            chunk_size = self.client.product_data_chunk_size
            for start in range(0, len(ids), chunk_size):
                chunk = ids[start:start + chunk_size]
                data = self.client.get_inventory_products_data(inventory_id, chunk)
                self._upsert_products(warehouse, data, categories, mode)
                self.db.commit()
                self._update_log()
                if self.log is not None:
                    check_cancelled(self.db, self.log)

        return self.stats

    def _load_products(self, external_ids: List[str]) -> Dict[str, Product]:
        return {
            p.external_product_id: p
            for p in self.db.query(Product).options(
                selectinload(Product.variants).selectinload(ProductVariant.inventory),
                selectinload(Product.images),
            ).filter(Product.external_product_id.in_(external_ids))
        }

    def _upsert_products(
        self,
        warehouse: Optional[str],
        data: Dict[str, Dict[str, Any]],
        categories: Dict[str, Any],
        mode: Optional[SyncMode],
    ) -> None:
        external_ids = {raw_id: self.router.prefixed_product_id(warehouse, raw_id) for raw_id in data}
        existing = self._load_products(list(external_ids.values()))

        for raw_id, product_data in data.items():
            self.stats["processed"] += 1
            external_id = external_ids[raw_id]
            product = existing.get(external_id)

            if (product is None and mode == SyncMode.UPDATE_ONLY) or (
                product is not None and mode == SyncMode.NEW_ONLY
            ):
                self.stats["skipped"] += 1
                continue

            try:
                with self.db.begin_nested():
                    if product is None:
                        product = Product(external_product_id=external_id, name="")
                        self.db.add(product)
                    self._apply_product(product, product_data, categories)
                    self._apply_variants(product, warehouse, product_data)
                    self._apply_images(product, product_data)
                self.stats["changed"] += 1
            except Exception as e:
                # One bad product must not abort the chunk
                message = f"Product {external_id}: {e}"
                logger.warning(message)
                if self.log is not None:
                    record_error(self.log, message)
                self.stats["skipped"] += 1

    def _apply_product(self, product: Product, data: Dict[str, Any], categories: Dict[str, Any]) -> None:
        name = _text_field(data, "name") or f"Product {product.external_product_id}"
        product.name = name
        product.slug = slugify(name) or f"product-{product.external_product_id}"
        product.description = _text_field(data, "description")
        product.sku = data.get("sku") or f"BL-{product.external_product_id}"
        product.ean = data.get("ean") or None
        product.price = _price(data)
        product.weight = data.get("weight") or None
        product.tax_rate = int(float(data.get("tax_rate") or 23))
        if data.get("tags") is not None:
            product.tags = list(data.get("tags") or [])
        category_id = data.get("category_id")
        product.category_id = categories.get(str(category_id)) if category_id else None
        product.active = True

    def _apply_variants(self, product: Product, warehouse: Optional[str], data: Dict[str, Any]) -> None:
        erp_variants = data.get("variants") or {}
        if isinstance(erp_variants, list):
            erp_variants = {str(v.get("variant_id")): v for v in erp_variants}

        by_external_id = {v.external_variant_id: v for v in product.variants}

        if not erp_variants:
            variant = next((v for v in product.variants if v.is_default), None)
            if variant is None:
                variant = ProductVariant(is_default=True, name="Domyślny")
                product.variants.append(variant)
            variant.sku = product.sku
            variant.barcode = product.ean
            variant.price = product.price
            variant.weight = product.weight
            self._ensure_inventory(variant)
            return

        for raw_variant_id, variant_data in erp_variants.items():
            external_variant_id = self.router.prefixed_product_id(warehouse, raw_variant_id)
            variant = by_external_id.get(external_variant_id)
            if variant is None:
                variant = ProductVariant(external_variant_id=external_variant_id)
                product.variants.append(variant)
            variant.name = variant_data.get("name")
            variant.sku = variant_data.get("sku") or f"{product.sku}-{raw_variant_id}"
            variant.barcode = variant_data.get("ean") or None
            variant.price = _price(variant_data) or product.price
            variant.weight = product.weight
            self._ensure_inventory(variant)

    def _ensure_inventory(self, variant: ProductVariant) -> None:
        # Quantities are owned by the stock sync
        if variant.inventory is None:
            variant.inventory = InventoryRecord(quantity=0, reserved=0)

    def _apply_images(self, product: Product, data: Dict[str, Any]) -> bool:
        urls = _image_urls(data)
        if not urls or [image.url for image in product.images] == urls:
            return False
        product.images[:] = [ProductImage(url=url, position=position) for position, url in enumerate(urls)]
        return True

    # Images

    def sync_images(self, mode: Optional[str] = None) -> Dict[str, int]:
        """Replace image rows of existing products from the ERP image map."""
        for warehouse, inventory_id in self.router.inventories():
            listed = self.client.get_inventory_products_list(inventory_id)
            raw_ids = [entry.get("id") for entry in listed if entry.get("id") is not None]
            external_ids = {str(raw): self.router.prefixed_product_id(warehouse, raw) for raw in raw_ids}
            existing = self._load_products(list(external_ids.values()))
            wanted = [raw for raw in raw_ids if external_ids[str(raw)] in existing]

            chunk_size = self.client.product_data_chunk_size
            for start in range(0, len(wanted), chunk_size):
                data = self.client.get_inventory_products_data(inventory_id, wanted[start:start + chunk_size])
                for raw_id, product_data in data.items():
                    self.stats["processed"] += 1
                    product = existing.get(external_ids.get(str(raw_id)))
                    if product is None:
                        self.stats["skipped"] += 1
                        continue
                    if mode == SyncMode.NEW_ONLY.value and product.images:
                        self.stats["skipped"] += 1
                        continue
                    if self._apply_images(product, product_data):
                        self.stats["changed"] += 1
                self.db.commit()
                self._update_log()
                if self.log is not None:
                    check_cancelled(self.db, self.log)

        return self.stats

    def _update_log(self) -> None:
        if self.log is not None:
            self.log.items_processed = self.stats["processed"]
            self.log.items_changed = self.stats["changed"]
            self.db.commit()
