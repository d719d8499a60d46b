"""
Warehouse Router - maps products to ERP inventories

Multi-warehouse sellers keep each wholesaler's stock in its own ERP
inventory. A product is routed by, in order:

1. the warehouse prefix of its external id ("btp-48213" -> btp)
2. the first known wholesaler tag, checked in a fixed order
3. the configured default inventory

Routing is a pure function of product state and static configuration.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .ports import UnroutableProductError


# Known wholesaler tag names -> warehouse key, in precedence order
WHOLESALER_TAGS: Sequence[Tuple[str, str]] = (
    ("btp", "btp"),
    ("hp", "hp"),
    ("hurtownia przemysłowa", "hp"),
    ("leker", "leker"),
    ("ikonka", "ikonka"),
    ("forcetop", "ikonka"),
)


def _tag_names(tags: Any) -> List[str]:
    names = []
    for tag in tags or []:
        # Tags may arrive as plain names or as {"name": ...} objects
        name = tag.get("name") if isinstance(tag, dict) else tag
        if name:
            names.append(str(name).strip().lower())
    return names


class WarehouseRouter:
    """
    Resolves the ERP inventory id for a product.

    Args:
        prefix_inventories: Warehouse key -> ERP inventory id
        default_inventory_id: Inventory for products without a warehouse mapping

    Example:
        router = WarehouseRouter({"btp": "22953"}, default_inventory_id="11235")
        router.resolve_inventory(product)  # "22953" for "btp-48213"
    """

    def __init__(self, prefix_inventories: Mapping[str, str], default_inventory_id: Optional[str] = None):
        self.prefix_inventories: Dict[str, str] = {
            key.lower(): str(inventory_id) for key, inventory_id in prefix_inventories.items()
        }
        self.default_inventory_id = str(default_inventory_id) if default_inventory_id else None

    def warehouse_key(self, product: Any) -> Optional[str]:
        """Warehouse key from the external id prefix or wholesaler tags, if any."""
        prefix = self.external_id_prefix(getattr(product, "external_product_id", None))
        if prefix:
            return prefix

        tags = _tag_names(getattr(product, "tags", None))
        for tag_name, key in WHOLESALER_TAGS:
            if tag_name in tags and key in self.prefix_inventories:
                return key
        return None

    def resolve_inventory(self, product: Any) -> str:
        """
        ERP inventory id for a product.

        Raises:
            UnroutableProductError: No warehouse mapping and no default inventory
        """
        key = self.warehouse_key(product)
        if key:
            return self.prefix_inventories[key]
        if self.default_inventory_id:
            return self.default_inventory_id
        raise UnroutableProductError(
            str(getattr(product, "external_product_id", None) or getattr(product, "id", "unknown"))
        )

    def inventory_for_wholesaler(self, name: Optional[str]) -> Optional[str]:
        """Inventory id for a wholesaler name as used in package shipping data."""
        if not name:
            return None
        name = name.strip().lower()
        if name in self.prefix_inventories:
            return self.prefix_inventories[name]
        for tag_name, key in WHOLESALER_TAGS:
            if tag_name == name and key in self.prefix_inventories:
                return self.prefix_inventories[key]
        return None

    def external_id_prefix(self, external_product_id: Optional[str]) -> Optional[str]:
        if not external_product_id or "-" not in str(external_product_id):
            return None
        prefix = str(external_product_id).split("-", 1)[0].lower()
        return prefix if prefix in self.prefix_inventories else None

    def raw_product_id(self, external_product_id: Optional[str]) -> Optional[str]:
        """ERP product id with a known warehouse prefix stripped."""
        if not external_product_id:
            return None
        if self.external_id_prefix(external_product_id):
            return str(external_product_id).split("-", 1)[1]
        return str(external_product_id)

    def prefixed_product_id(self, warehouse_key: Optional[str], raw_id: Any) -> str:
        return f"{warehouse_key}-{raw_id}" if warehouse_key else str(raw_id)

    def inventories(self) -> List[Tuple[Optional[str], str]]:
        """(warehouse key, inventory id) pairs; the default inventory has key None."""
        pairs: List[Tuple[Optional[str], str]] = []
        if self.default_inventory_id:
            pairs.append((None, self.default_inventory_id))
        for key, inventory_id in self.prefix_inventories.items():
            if inventory_id != self.default_inventory_id:
                pairs.append((key, inventory_id))
        return pairs
