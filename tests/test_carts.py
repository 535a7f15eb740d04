import pytest

import carts
from conftest import make_product
from errors import ConflictError, InsufficientStockError, NotFoundError


def _quantities(cart):
    return {line["product_id"]: line["quantity"] for line in cart["items"]}


def _reserved(db, product):
    return db["product"].find_one({"_id": product["_id"]})["reserved"]


def test_add_item_reserves_and_merges_lines(db, customer, product):
    cart = carts.get_or_create_cart(db, user_id=customer["_id"])
    cart = carts.add_item(db, cart, str(product["_id"]), 2)
    cart = carts.add_item(db, cart, str(product["_id"]), 3)
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 5
    assert _reserved(db, product) == 5
    assert cart["version"] == 2


def test_add_item_over_stock_leaves_cart_untouched(db, customer, category):
    product = make_product(db, category, stock=2)
    cart = carts.get_or_create_cart(db, user_id=customer["_id"])
    with pytest.raises(InsufficientStockError):
        carts.add_item(db, cart, str(product["_id"]), 3)
    assert carts.find_cart(db, user_id=customer["_id"])["items"] == []
    assert _reserved(db, product) == 0


def test_update_quantity_reserves_only_the_delta(db, customer, product):
    cart = carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 4)
    item_id = cart["items"][0]["_id"]
    cart = carts.update_item_quantity(db, cart, item_id, 6)
    assert _reserved(db, product) == 6
    cart = carts.update_item_quantity(db, cart, item_id, 1)
    assert _reserved(db, product) == 1
    assert cart["items"][0]["quantity"] == 1


def test_remove_and_clear_release_reservations(db, customer, category):
    a = make_product(db, category, name="Card A", sku="A")
    b = make_product(db, category, name="Card B", sku="B")
    cart = carts.get_or_create_cart(db, user_id=customer["_id"])
    cart = carts.add_item(db, cart, str(a["_id"]), 2)
    cart = carts.add_item(db, cart, str(b["_id"]), 3)

    cart = carts.remove_item(db, cart, cart["items"][0]["_id"])
    assert _reserved(db, a) == 0
    assert _quantities(cart) == {str(b["_id"]): 3}

    cart = carts.clear_cart(db, cart)
    assert cart["items"] == []
    assert _reserved(db, b) == 0


def test_unknown_line_is_not_found(db, customer):
    cart = carts.get_or_create_cart(db, user_id=customer["_id"])
    with pytest.raises(NotFoundError, match="Item not found in cart"):
        carts.remove_item(db, cart, "64b7f0c2a1b2c3d4e5f60718")


def test_merge_guest_cart_sums_quantities(db, customer, category):
    a = make_product(db, category, name="Card A", sku="A")
    b = make_product(db, category, name="Card B", sku="B")
    user_cart = carts.get_or_create_cart(db, user_id=customer["_id"])
    user_cart = carts.add_item(db, user_cart, str(a["_id"]), 1)
    carts.add_item(db, user_cart, str(b["_id"]), 3)
    guest_cart = carts.get_or_create_cart(db, session_id="guest-session")
    carts.add_item(db, guest_cart, str(a["_id"]), 2)

    merged = carts.merge_guest_cart(db, "guest-session", str(customer["_id"]))

    assert _quantities(merged) == {str(a["_id"]): 3, str(b["_id"]): 3}
    assert carts.find_cart(db, session_id="guest-session") is None
    # the guest hold moves with the line
    assert _reserved(db, a) == 3


def test_merge_without_guest_cart_returns_user_cart(db, customer, product):
    cart = carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 1)
    merged = carts.merge_guest_cart(db, "nobody", str(customer["_id"]))
    assert merged["_id"] == cart["_id"]
    assert _quantities(merged) == {str(product["_id"]): 1}


def test_cart_view_totals(db, customer, category):
    product = make_product(db, category, price=30.0)
    cart = carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 2)
    view = carts.cart_view(db, cart)
    assert view["item_count"] == 2
    assert view["items"][0]["line_total"] == 60.0
    assert view["totals"] == {"subtotal": 60.0, "tax": 6.0, "shipping": 5.0, "total": 71.0}


def test_free_shipping_at_threshold():
    assert carts.compute_totals(100.0)["shipping"] == 0.0
    assert carts.compute_totals(0)["shipping"] == 0.0
    assert carts.compute_totals(99.99)["shipping"] == 5.0


def test_validate_cart_flags_problems(db, customer, category):
    gone = make_product(db, category, name="Gone Card", sku="GONE")
    hidden = make_product(db, category, name="Hidden Card", sku="HID")
    short = make_product(db, category, name="Short Card", sku="SHORT", stock=5)
    fine = make_product(db, category, name="Fine Card", sku="FINE")
    cart = carts.get_or_create_cart(db, user_id=customer["_id"])
    for p in (gone, hidden, short, fine):
        cart = carts.add_item(db, cart, str(p["_id"]), 2)

    db["product"].delete_one({"_id": gone["_id"]})
    db["product"].update_one({"_id": hidden["_id"]}, {"$set": {"is_active": False}})
    db["product"].update_one({"_id": short["_id"]}, {"$set": {"stock": 1}})

    result = carts.validate_cart(db, cart)
    reasons = {issue["product_id"]: issue["reason"] for issue in result["issues"]}
    assert not result["is_valid"]
    assert reasons == {
        str(gone["_id"]): "removed",
        str(hidden["_id"]): "inactive",
        str(short["_id"]): "insufficient_stock",
    }
    assert len(result["errors"]) == 3


def test_validate_cart_counts_own_reservation(db, customer, category):
    product = make_product(db, category, stock=3)
    cart = carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 3)
    assert carts.validate_cart(db, cart)["is_valid"]


def test_save_for_later_and_move_back(db, customer, product):
    cart = carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 2)
    result = carts.save_for_later(db, customer, cart["items"][0]["_id"])
    assert result["cart"]["items"] == []
    assert result["wishlist_count"] == 1
    assert _reserved(db, product) == 0

    cart = carts.move_to_cart(db, customer, str(product["_id"]), 1)
    assert _quantities(cart) == {str(product["_id"]): 1}
    assert db["user"].find_one({"_id": customer["_id"]})["wishlist"] == []


def test_writes_from_a_stale_read_keep_every_line(db, customer, category):
    a = make_product(db, category, name="Card A", sku="A")
    b = make_product(db, category, name="Card B", sku="B")
    stale = carts.get_or_create_cart(db, user_id=customer["_id"])
    carts.add_item(db, stale, str(a["_id"]), 3)
    cart = carts.add_item(db, stale, str(b["_id"]), 2)

    assert _quantities(cart) == {str(a["_id"]): 3, str(b["_id"]): 2}
    assert cart["version"] == 2
    assert _reserved(db, a) == 3
    assert _reserved(db, b) == 2


def test_remove_from_a_stale_read_releases_once(db, customer, product):
    stale = carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 2)
    item_id = stale["items"][0]["_id"]
    carts.remove_item(db, stale, item_id)
    with pytest.raises(NotFoundError, match="Item not found in cart"):
        carts.remove_item(db, stale, item_id)
    assert _reserved(db, product) == 0


def test_lost_cart_races_end_in_conflict(db, customer, product, monkeypatch):
    cart = carts.get_or_create_cart(db, user_id=customer["_id"])
    monkeypatch.setattr(carts, "_save_if_unchanged", lambda database, current, items: None)
    with pytest.raises(ConflictError):
        carts.add_item(db, cart, str(product["_id"]), 2)
    assert _reserved(db, product) == 0
