"""Unit tests for the ERP -> local stock sync."""

import pytest

from connectors.warehouse_router import WarehouseRouter
from erp_sync.runs import SyncCancelled, cancel_run, start_run
from erp_sync.stock_sync import StockSync, default_variant, total_stock
from fixtures.erp import FakeErpClient, stock_pages
from models import InventoryRecord, Product, ProductVariant, SyncType


@pytest.fixture
def router():
    return WarehouseRouter({"btp": "22953"}, default_inventory_id="11235")


@pytest.fixture
def fake():
    return FakeErpClient(page_size=2)


def counters(db_session, variant):
    record = db_session.query(InventoryRecord).filter(
        InventoryRecord.variant_id == variant.id
    ).populate_existing().one()
    return record.quantity, record.reserved


def make_variant_product(db_session, external_product_id, variant_ids, quantity=1):
    product = Product(external_product_id=external_product_id, name="Wiertło", sku="WI")
    for variant_id in variant_ids:
        variant = ProductVariant(external_variant_id=variant_id, sku=f"WI-{variant_id}")
        variant.inventory = InventoryRecord(quantity=quantity, reserved=0)
        product.variants.append(variant)
    db_session.add(product)
    db_session.commit()
    return product


class TestTotalStock:

    def test_sums_warehouses(self):
        assert total_stock({"bl_1": 5, "bl_2": "2"}) == 7

    def test_ignores_garbage_and_clamps_at_zero(self):
        assert total_stock({"bl_1": "n/a", "bl_2": -3}) == 0
        assert total_stock(None) == 0

    def test_default_variant_prefers_flagged_variant(self, db_session):
        product = make_variant_product(db_session, "1003", ["501", "502"])

        assert default_variant(product) is None
        product.variants[1].is_default = True
        assert default_variant(product) is product.variants[1]


class TestStockSync:

    def test_applies_all_inventories(self, db_session, fake, router, make_product):
        plain = make_product("1001", quantity=10, reserved=2)
        wholesale = make_product("btp-2002", quantity=0)
        with_variants = make_variant_product(db_session, "1003", ["501", "502"])
        fake.responses["getInventoryProductsStock"] = stock_pages({
            ("11235", 1): [
                {"product_id": 1001, "stock": {"bl_1": 7, "bl_2": "5"}},
                {"product_id": 9999, "stock": {"bl_1": 1}},
            ],
            ("11235", 2): [
                {"product_id": 1003, "variants": {"501": {"bl_1": 4}, "502": {"bl_1": 0}}},
            ],
            ("22953", 1): [
                {"product_id": 2002, "stock": {"bl_9": 5}},
            ],
        })

        stats = StockSync(db_session, fake, router).run()

        assert stats == {"processed": 4, "changed": 4, "skipped": 1}
        assert counters(db_session, plain.variants[0]) == (12, 2)
        assert counters(db_session, wholesale.variants[0]) == (5, 0)
        variants = {v.external_variant_id: v for v in with_variants.variants}
        assert counters(db_session, variants["501"]) == (4, 0)
        assert counters(db_session, variants["502"]) == (0, 0)
        assert [(p["inventory_id"], p["page"]) for p in fake.params_of("getInventoryProductsStock")] == [
            (11235, 1), (11235, 2), (22953, 1),
        ]

    def test_unchanged_stock_not_counted(self, db_session, fake, router, make_product):
        make_product("1001", quantity=3)
        fake.responses["getInventoryProductsStock"] = stock_pages({
            ("11235", 1): [{"product_id": 1001, "stock": {"bl_1": 3}}],
        })

        stats = StockSync(db_session, fake, router).run()

        assert stats["changed"] == 0

    def test_reservations_are_not_touched(self, db_session, fake, router, make_product):
        product = make_product("1001", quantity=10, reserved=4)
        fake.responses["getInventoryProductsStock"] = stock_pages({
            ("11235", 1): [{"product_id": 1001, "stock": {"bl_1": 2}, "reservations": {"bl_1": 9}}],
        })

        StockSync(db_session, fake, router).run()

        assert counters(db_session, product.variants[0]) == (2, 4)

    def test_missing_inventory_row_is_created(self, db_session, fake, router):
        product = Product(external_product_id="1001", name="Klucz", sku="KL")
        product.variants.append(ProductVariant(is_default=True, sku="KL"))
        db_session.add(product)
        db_session.commit()
        fake.responses["getInventoryProductsStock"] = stock_pages({
            ("11235", 1): [{"product_id": 1001, "stock": {"bl_1": 6}}],
        })

        stats = StockSync(db_session, fake, router).run()

        assert stats["changed"] == 1
        assert counters(db_session, product.variants[0]) == (6, 0)

    def test_unknown_variant_skipped(self, db_session, fake, router):
        make_variant_product(db_session, "1003", ["501"])
        fake.responses["getInventoryProductsStock"] = stock_pages({
            ("11235", 1): [{"product_id": 1003, "variants": {"777": {"bl_1": 4}}}],
        })

        stats = StockSync(db_session, fake, router).run()

        assert stats == {"processed": 1, "changed": 0, "skipped": 1}

    def test_cancel_stops_after_current_page(self, db_session, fake, router, make_product):
        make_product("1001", quantity=0)
        make_product("1002", quantity=0)
        log = start_run(db_session, SyncType.STOCK)
        pages = stock_pages({
            ("11235", 1): [
                {"product_id": 1001, "stock": {"bl_1": 1}},
                {"product_id": 1002, "stock": {"bl_1": 1}},
            ],
        })

        def cancel_while_reading(parameters):
            cancel_run(db_session, log.id)
            return pages(parameters)

        fake.responses["getInventoryProductsStock"] = cancel_while_reading

        with pytest.raises(SyncCancelled):
            StockSync(db_session, fake, router, log).run()

        assert len(fake.params_of("getInventoryProductsStock")) == 1
        assert log.items_changed == 2
