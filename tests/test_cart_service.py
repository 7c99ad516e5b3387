from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from storefront.domain.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from storefront.data.models.product import ProductModel
from storefront.data.seed import SAMPLE_PRODUCTS, seed
from storefront.repos.cart_repo import CartRepo
from storefront.services.cart_service import CartIdentity, CartService
from storefront.tasks.expire import purge_guest_carts

USER = CartIdentity(user_id="user-1")
GUEST = CartIdentity(guest_id="guest_1700000000000")


@pytest.fixture
def svc(db, lock_service):
    return CartService(db, lock_service)


class TestAddItem:
    def test_creates_cart_and_prices_with_discount(self, svc, make_product):
        p = make_product(price=Decimal("100.00"), discount_price=Decimal("80.00"))

        cart, created = svc.add_item(USER, p.id, 2, "M", "Đen")

        assert created is True
        assert cart["user_id"] == "user-1"
        assert len(cart["products"]) == 1
        assert cart["total_price"] == Decimal("160.00")
        assert cart["version"] == 2

    def test_same_variant_increments_quantity(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")

        cart, created = svc.add_item(USER, p.id, 2, "M", "Đen")

        assert created is False
        assert [line["quantity"] for line in cart["products"]] == [3]
        assert cart["total_price"] == Decimal("300.00")

    def test_other_variant_is_a_new_line(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")

        cart, _ = svc.add_item(USER, p.id, 1, "L", "Trắng")

        assert len(cart["products"]) == 2
        assert cart["total_price"] == Decimal("200.00")

    def test_total_sums_lines(self, svc, make_product):
        a = make_product(price=Decimal("100.00"), discount_price=Decimal("90.00"))
        b = make_product(name="Quần jean", price=Decimal("250.00"))
        svc.add_item(USER, a.id, 2, "M", "Đen")

        cart, _ = svc.add_item(USER, b.id, 1, "S", "Trắng")

        assert cart["total_price"] == Decimal("430.00")

    def test_guest_without_id_gets_generated_one(self, svc, make_product):
        p = make_product()

        cart, created = svc.add_item(CartIdentity(), p.id, 1, "M", "Đen")

        assert created is True
        assert cart["user_id"] is None
        assert cart["guest_id"].startswith("guest_")

    def test_rejects_invalid_variant(self, svc, make_product):
        p = make_product()

        with pytest.raises(ValidationError, match="Invalid size or color"):
            svc.add_item(USER, p.id, 1, "XXL", "Đen")

    def test_rejects_quantity_over_stock(self, svc, make_product):
        p = make_product(count_in_stock=2)

        with pytest.raises(ValidationError, match="Quantity exceeds stock"):
            svc.add_item(USER, p.id, 3, "M", "Đen")

    def test_rejects_cumulative_quantity_over_stock(self, svc, make_product):
        p = make_product(count_in_stock=3)
        svc.add_item(USER, p.id, 2, "M", "Đen")

        with pytest.raises(ValidationError, match="Quantity exceeds stock"):
            svc.add_item(USER, p.id, 2, "M", "Đen")

    def test_rejects_non_positive_quantity(self, svc, make_product):
        p = make_product()

        with pytest.raises(ValidationError):
            svc.add_item(USER, p.id, 0, "M", "Đen")

    def test_rejects_boolean_quantity(self, svc, make_product):
        p = make_product()

        with pytest.raises(ValidationError, match="positive integer"):
            svc.add_item(USER, p.id, True, "M", "Đen")

    def test_missing_product(self, svc):
        with pytest.raises(NotFoundError):
            svc.add_item(USER, 999, 1, "M", "Đen")

    def test_version_conflict_discards_changes(self, svc, make_product, db, monkeypatch):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")

        monkeypatch.setattr(svc.repo, "update_cart_version", lambda **kwargs: 0)
        with pytest.raises(ConflictError):
            svc.add_item(USER, p.id, 1, "L", "Trắng")

        db.expire_all()
        cart = CartRepo(db).get_cart_by_user("user-1")
        assert [(i.size, i.quantity) for i in cart.items] == [("M", 1)]


class TestUpdateAndRemove:
    def test_update_sets_quantity(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")

        cart = svc.update_quantity(USER, p.id, 4, "M", "Đen")

        assert cart["products"][0]["quantity"] == 4
        assert cart["total_price"] == Decimal("400.00")

    def test_update_to_zero_removes_line(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")

        cart = svc.update_quantity(USER, p.id, 0, "M", "Đen")

        assert cart["products"] == []
        assert cart["total_price"] == Decimal("0")

    def test_update_over_stock(self, svc, make_product):
        p = make_product(count_in_stock=2)
        svc.add_item(USER, p.id, 1, "M", "Đen")

        with pytest.raises(ValidationError, match="Quantity exceeds stock"):
            svc.update_quantity(USER, p.id, 3, "M", "Đen")

    def test_update_rejects_boolean_quantity(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 2, "M", "Đen")

        with pytest.raises(ValidationError):
            svc.update_quantity(USER, p.id, False, "M", "Đen")

    def test_update_unknown_line(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")

        with pytest.raises(NotFoundError, match="Product not found in cart"):
            svc.update_quantity(USER, p.id, 1, "L", "Đen")

    def test_update_without_cart(self, svc, make_product):
        p = make_product()

        with pytest.raises(NotFoundError, match="Cart not found"):
            svc.update_quantity(USER, p.id, 1, "M", "Đen")

    def test_remove_line(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")
        svc.add_item(USER, p.id, 1, "L", "Đen")

        cart = svc.remove_item(USER, p.id, "M", "Đen")

        assert [line["size"] for line in cart["products"]] == ["L"]

    def test_remove_unknown_line(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")

        with pytest.raises(NotFoundError):
            svc.remove_item(USER, p.id, "S", "Đen")

    def test_clear_is_idempotent(self, svc, make_product, db):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")

        assert svc.clear(USER)["products"] == []
        assert svc.clear(USER)["products"] == []
        assert CartRepo(db).get_cart_by_user("user-1") is None


class TestReadReconciliation:
    def test_clamps_quantity_to_stock(self, svc, make_product, db):
        p = make_product(count_in_stock=5)
        svc.add_item(USER, p.id, 4, "M", "Đen")
        p.count_in_stock = 2
        db.commit()

        cart = svc.get_cart(USER)

        assert cart["products"][0]["quantity"] == 2
        assert cart["products"][0]["count_in_stock"] == 2
        assert cart["adjusted"] == [{
            "product_id": p.id,
            "size": "M",
            "color": "Đen",
            "name": p.name,
            "old_qty": 4,
            "new_qty": 2,
        }]
        assert cart["total_price"] == Decimal("200.00")

    def test_drops_sold_out_and_vanished_products(self, svc, make_product, db):
        sold_out = make_product(name="Áo sơ mi")
        gone = make_product(name="Áo khoác")
        svc.add_item(USER, sold_out.id, 1, "M", "Đen")
        svc.add_item(USER, gone.id, 1, "M", "Đen")

        sold_out.count_in_stock = 0
        db.delete(gone)
        db.commit()

        cart = svc.get_cart(USER)

        assert cart["products"] == []
        reasons = {r["name"]: r["reason"] for r in cart["removed"]}
        assert reasons == {"Áo sơ mi": "out_of_stock", "Áo khoác": "not_found"}

    def test_unchanged_cart_is_not_rewritten(self, svc, make_product):
        p = make_product()
        cart, _ = svc.add_item(USER, p.id, 1, "M", "Đen")

        read = svc.get_cart(USER)

        assert read["version"] == cart["version"]
        assert read["removed"] == [] and read["adjusted"] == []

    def test_get_or_create_reuses_cart(self, svc):
        created = svc.get_or_create(GUEST)

        assert created.guest_id == GUEST.guest_id
        assert svc.get_or_create(GUEST).id == created.id

    def test_missing_cart_reads_empty(self, svc):
        cart = svc.get_cart(GUEST)

        assert cart["id"] is None
        assert cart["guest_id"] == GUEST.guest_id
        assert cart["products"] == []


class TestMerge:
    def test_sums_matching_lines_and_deletes_guest_cart(self, svc, make_product, db):
        p = make_product(count_in_stock=5)
        svc.add_item(USER, p.id, 1, "M", "Đen")
        svc.add_item(GUEST, p.id, 2, "M", "Đen")

        cart = svc.merge(GUEST.guest_id, "user-1")

        assert [line["quantity"] for line in cart["products"]] == [3]
        assert cart["total_price"] == Decimal("300.00")
        assert CartRepo(db).get_cart_by_guest(GUEST.guest_id) is None

    def test_appends_new_lines(self, svc, make_product):
        p = make_product()
        svc.add_item(USER, p.id, 1, "M", "Đen")
        svc.add_item(GUEST, p.id, 1, "L", "Trắng")

        cart = svc.merge(GUEST.guest_id, "user-1")

        assert {(line["size"], line["color"]) for line in cart["products"]} == {("M", "Đen"), ("L", "Trắng")}

    def test_guest_cart_is_adopted_without_user_cart(self, svc, make_product):
        p = make_product()
        guest, _ = svc.add_item(GUEST, p.id, 2, "M", "Đen")

        cart = svc.merge(GUEST.guest_id, "user-1")

        assert cart["id"] == guest["id"]
        assert cart["user_id"] == "user-1"
        assert cart["guest_id"] is None

    def test_insufficient_stock_leaves_both_carts(self, svc, make_product, db):
        p = make_product(count_in_stock=3)
        svc.add_item(USER, p.id, 2, "M", "Đen")
        svc.add_item(GUEST, p.id, 2, "M", "Đen")

        with pytest.raises(InsufficientStockError):
            svc.merge(GUEST.guest_id, "user-1")

        db.expire_all()
        repo = CartRepo(db)
        assert repo.get_cart_by_guest(GUEST.guest_id).items[0].quantity == 2
        assert repo.get_cart_by_user("user-1").items[0].quantity == 2

    def test_retry_after_merge_is_noop(self, svc, make_product):
        p = make_product()
        svc.add_item(GUEST, p.id, 1, "M", "Đen")
        first = svc.merge(GUEST.guest_id, "user-1")

        second = svc.merge(GUEST.guest_id, "user-1")

        assert second["id"] == first["id"]
        assert second["products"] == first["products"]

    def test_nothing_to_merge(self, svc):
        cart = svc.merge("guest_missing", "user-1")

        assert cart["products"] == []
        assert cart["user_id"] == "user-1"

    def test_empty_guest_cart(self, svc, make_product):
        p = make_product()
        svc.add_item(GUEST, p.id, 1, "M", "Đen")
        svc.remove_item(GUEST, p.id, "M", "Đen")

        with pytest.raises(ValidationError, match="Guest cart is empty"):
            svc.merge(GUEST.guest_id, "user-1")

    def test_concurrent_merge_is_rejected(self, svc, make_product, lock_service):
        p = make_product()
        svc.add_item(GUEST, p.id, 1, "M", "Đen")
        lock_service.acquire_merge_lock(GUEST.guest_id, "other-request", ttl=30)

        with pytest.raises(ConflictError):
            svc.merge(GUEST.guest_id, "user-1")

    def test_lock_is_released_after_failure(self, svc, make_product, lock_service):
        p = make_product(count_in_stock=1)
        svc.add_item(USER, p.id, 1, "M", "Đen")
        svc.add_item(GUEST, p.id, 1, "M", "Đen")

        with pytest.raises(InsufficientStockError):
            svc.merge(GUEST.guest_id, "user-1")

        assert lock_service.locks == {}


class TestGuestCartPurge:
    def test_purges_only_stale_guest_carts(self, svc, make_product, db):
        p = make_product()
        svc.add_item(GUEST, p.id, 1, "M", "Đen")
        svc.add_item(CartIdentity(guest_id="guest_fresh"), p.id, 1, "M", "Đen")
        svc.add_item(USER, p.id, 1, "M", "Đen")

        repo = CartRepo(db)
        stale = repo.get_cart_by_guest(GUEST.guest_id)
        stale.updated_at = datetime.now(timezone.utc) - timedelta(days=60)
        old_user_cart = repo.get_cart_by_user("user-1")
        old_user_cart.updated_at = datetime.now(timezone.utc) - timedelta(days=60)
        db.commit()

        assert purge_guest_carts(db) == 1

        db.expire_all()
        assert repo.get_cart_by_guest(GUEST.guest_id) is None
        assert repo.get_cart_by_guest("guest_fresh") is not None
        assert repo.get_cart_by_user("user-1") is not None


class TestSeededCatalog:
    def test_seed_runs_once_and_products_are_cartable(self, svc, db):
        seed()
        seed()

        products = db.execute(select(ProductModel).order_by(ProductModel.id)).scalars().all()
        assert [p.name for p in products] == [p["name"] for p in SAMPLE_PRODUCTS]

        cart, _ = svc.add_item(USER, products[0].id, 1, "M", "Đen")
        assert cart["total_price"] == SAMPLE_PRODUCTS[0]["discount_price"]
