from pymongo.errors import PyMongoError

import shopping
from conftest import product_data, seed_company, seed_profile

PRODUCT = {"id": "p1", **product_data("Coconut Oil", original=250, discount=200)}


def test_toggle_favorite_twice_restores_membership(tree):
    first = shopping.toggle_favorite(tree, "u1", PRODUCT)
    assert first.ok and first.value is True
    fav = tree.get("user/u1/addfav/p1")
    assert fav["productId"] == "p1"
    assert fav["productName"] == "Coconut Oil"
    assert fav["price"] == 200
    assert isinstance(fav["addedAt"], int)

    second = shopping.toggle_favorite(tree, "u1", PRODUCT)
    assert second.ok and second.value is False
    assert tree.exists("user/u1/addfav/p1") is False


def test_favorite_snapshot_is_not_live(tree):
    shopping.toggle_favorite(tree, "u1", PRODUCT)
    seed_company(tree, "c1", {"p1": product_data("Coconut Oil", discount=150)})
    assert shopping.list_favorites(tree, "u1")[0]["price"] == 200


def test_remove_favorite_is_idempotent(tree):
    shopping.toggle_favorite(tree, "u1", PRODUCT)
    assert shopping.remove_favorite(tree, "u1", "p1").ok
    assert shopping.remove_favorite(tree, "u1", "p1").ok
    assert shopping.list_favorites(tree, "u1") == []


def test_add_to_cart_requires_profile(tree):
    result = shopping.add_to_cart(tree, "u1", PRODUCT, 1)
    assert not result.ok
    assert result.status == "profile_required"
    assert tree.get("user/u1/addtocart") is None


def test_add_to_cart_writes_snapshot(tree):
    seed_profile(tree, "u1")
    result = shopping.add_to_cart(tree, "u1", PRODUCT, 2)
    assert result.ok
    item = tree.get("user/u1/addtocart/p1")
    assert item["productId"] == "p1"
    assert item["quantity"] == 2
    assert item["price"] == 200


def test_add_to_cart_rejects_duplicates_without_merging(tree):
    seed_profile(tree, "u1")
    shopping.add_to_cart(tree, "u1", PRODUCT, 2)
    before = tree.get("user/u1/addtocart")
    result = shopping.add_to_cart(tree, "u1", PRODUCT, 5)
    assert not result.ok
    assert result.status == "already_in_cart"
    assert tree.get("user/u1/addtocart") == before


def test_add_to_cart_rejects_zero_quantity(tree):
    seed_profile(tree, "u1")
    assert shopping.add_to_cart(tree, "u1", PRODUCT, 0).status == "invalid"


def test_update_quantity_below_one_is_ignored(tree):
    seed_profile(tree, "u1")
    shopping.add_to_cart(tree, "u1", PRODUCT, 2)
    for quantity in (0, -3):
        result = shopping.update_quantity(tree, "u1", "p1", quantity)
        assert result.ok and result.status == "ignored"
    assert tree.get("user/u1/addtocart/p1")["quantity"] == 2


def test_update_quantity_touches_only_quantity(tree):
    seed_profile(tree, "u1")
    shopping.add_to_cart(tree, "u1", PRODUCT, 2)
    before = tree.get("user/u1/addtocart/p1")
    assert shopping.update_quantity(tree, "u1", "p1", 7).status == "updated"
    after = tree.get("user/u1/addtocart/p1")
    assert after == {**before, "quantity": 7}


def test_update_quantity_of_missing_item(tree):
    assert shopping.update_quantity(tree, "u1", "nope", 2).status == "not_found"


def test_remove_item(tree):
    seed_profile(tree, "u1")
    shopping.add_to_cart(tree, "u1", PRODUCT, 1)
    assert shopping.remove_item(tree, "u1", "p1").ok
    assert tree.get("user/u1/addtocart") is None


def test_load_cart_resolves_live_catalog_data(tree):
    seed_profile(tree, "u1")
    shopping.add_to_cart(tree, "u1", PRODUCT, 2)
    tree.set("user/u1/addtocart/gone", {"productId": "gone", "productName": "Old", "price": 10, "quantity": 1})
    seed_company(tree, "c1", {"p1": product_data("Coconut Oil")})
    items = {i["id"]: i for i in shopping.load_cart(tree, "u1", tree.get("companies"))}
    assert items["p1"]["image"] == "http://testserver/files/product-photos/a"
    assert items["p1"]["originalPrice"] == 250
    assert items["gone"]["image"] == shopping.PLACEHOLDER_IMAGE
    assert items["gone"]["originalPrice"] == 0


def test_cart_totals():
    items = [{"price": 100, "quantity": 2}, {"price": 50, "quantity": 1}]
    assert shopping.cart_totals(items, 99) == {"subtotal": 250, "shipping": 99, "total": 349}


def test_failed_write_reports_error_result(tree, monkeypatch):
    seed_profile(tree, "u1")

    def broken_set(path, value):
        raise PyMongoError("connection lost")

    monkeypatch.setattr(tree, "set", broken_set)
    result = shopping.add_to_cart(tree, "u1", PRODUCT, 1)
    assert not result.ok
    assert result.status == "error"
    assert "try again" in result.message
    assert shopping.toggle_favorite(tree, "u1", PRODUCT).status == "error"
