from datetime import timedelta

import pytest

import carts
import orders
import payments
from conftest import make_product
from errors import ConflictError, PermissionDenied, ValidationError


def _stock(db, product):
    doc = db["product"].find_one({"_id": product["_id"]})
    return doc["stock"], doc["reserved"]


def _checkout(db, user, address, *lines):
    cart = carts.get_or_create_cart(db, user_id=user["_id"])
    for product, quantity in lines:
        cart = carts.add_item(db, cart, str(product["_id"]), quantity)
    return orders.create_order_from_cart(db, user, address)


@pytest.mark.parametrize("current,new,allowed", [
    ("pending", "paid", True),
    ("pending", "cancelled", True),
    ("pending", "shipped", False),
    ("paid", "shipped", True),
    ("shipped", "delivered", True),
    ("shipped", "cancelled", False),
    ("delivered", "cancelled", False),
    ("cancelled", "pending", False),
])
def test_transitions(current, new, allowed):
    assert orders.can_transition(current, new) is allowed


def test_order_number_format():
    number = orders.new_order_number()
    prefix, day, suffix = number.split("-")
    assert prefix == "ORD"
    assert len(day) == 8 and day.isdigit()
    assert len(suffix) == 6


def test_checkout_converts_reservation_into_sale(db, customer, product, address):
    order = _checkout(db, customer, address, (product, 3))

    assert order["status"] == "pending"
    assert order["payment_status"] == "unpaid"
    assert order["items"][0]["quantity"] == 3
    assert order["items"][0]["subtotal"] == 150.0
    assert order["pricing"] == {"subtotal": 150.0, "tax": 15.0, "shipping": 0.0, "total": 165.0}
    assert order["status_history"][0]["status"] == "pending"
    assert _stock(db, product) == (17, 0)
    assert carts.find_cart(db, user_id=customer["_id"])["items"] == []


def test_checkout_empty_cart(db, customer, address):
    carts.get_or_create_cart(db, user_id=customer["_id"])
    with pytest.raises(ValidationError, match="Cart is empty"):
        orders.create_order_from_cart(db, customer, address)


def test_checkout_invalid_cart_reports_errors(db, customer, product, address):
    carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 2)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"is_active": False}})
    with pytest.raises(ValidationError) as exc:
        orders.create_order_from_cart(db, customer, address)
    assert exc.value.message == "Cart validation failed"
    assert exc.value.errors
    assert db["order"].count_documents({}) == 0


def test_checkout_rolls_back_when_stock_vanishes(db, customer, category, address, monkeypatch):
    a = make_product(db, category, name="Card A", sku="A", stock=5)
    b = make_product(db, category, name="Card B", sku="B", stock=5)
    cart = carts.get_or_create_cart(db, user_id=customer["_id"])
    cart = carts.add_item(db, cart, str(a["_id"]), 2)
    carts.add_item(db, cart, str(b["_id"]), 2)

    real_validate = orders.validate_cart
    # stock of B disappears between validation and commit
    def validate_then_drain(database, c):
        result = real_validate(database, c)
        database["product"].update_one({"_id": b["_id"]}, {"$set": {"stock": 1}})
        return result

    monkeypatch.setattr(orders, "validate_cart", validate_then_drain)
    with pytest.raises(ValidationError):
        orders.create_order_from_cart(db, customer, address)

    assert _stock(db, a) == (5, 2)
    assert len(carts.find_cart(db, user_id=customer["_id"])["items"]) == 2
    assert db["order"].count_documents({}) == 0


def test_cancel_restocks_items(db, customer, product, address):
    order = _checkout(db, customer, address, (product, 4))
    cancelled = orders.cancel_order(db, order["_id"], customer, "Changed my mind")
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancel_reason"] == "Changed my mind"
    assert cancelled["status_history"][-1]["status"] == "cancelled"
    assert _stock(db, product) == (20, 0)


def test_cannot_cancel_delivered_order(db, customer, admin, product, address):
    order = _checkout(db, customer, address, (product, 1))
    orders.mark_as_paid(db, order["_id"], admin)
    orders.add_tracking(db, order["_id"], "DHL", "TRACK1", admin)
    orders.update_status(db, order["_id"], "delivered", admin)
    with pytest.raises(ValidationError, match="Cannot cancel order with status: delivered"):
        orders.cancel_order(db, order["_id"], customer)
    assert _stock(db, product) == (19, 0)


def test_only_owner_cancels(db, customer, product, address):
    from conftest import make_user

    other = make_user(db, "other@example.com")
    order = _checkout(db, customer, address, (product, 1))
    with pytest.raises(PermissionDenied):
        orders.cancel_order(db, order["_id"], other)


def test_cancelling_paid_order_awaits_refund(db, customer, admin, product, address):
    order = _checkout(db, customer, address, (product, 1))
    orders.mark_as_paid(db, order["_id"], admin, "REF-1")
    cancelled = orders.update_status(db, order["_id"], "cancelled", admin)
    assert cancelled["status"] == "cancelled"
    assert cancelled["payment_status"] == "refund_pending"


def test_illegal_transition_rejected(db, customer, admin, product, address):
    order = _checkout(db, customer, address, (product, 1))
    with pytest.raises(ValidationError, match="Cannot change order status from pending to shipped"):
        orders.update_status(db, order["_id"], "shipped", admin)


def test_payment_records_transaction_and_refund(db, customer, admin, product, address):
    order = _checkout(db, customer, address, (product, 2))
    paid = orders.mark_as_paid(db, order["_id"], admin, "REF-42")
    assert paid["status"] == "paid"
    assert paid["payment_status"] == "paid"
    with pytest.raises(ValidationError, match="already paid"):
        orders.mark_as_paid(db, order["_id"], admin)

    tx = db["transaction"].find_one({"order_id": str(order["_id"])})
    assert tx["amount"] == paid["pricing"]["total"]
    assert tx["reference"] == "REF-42"

    refunded = payments.process_refund(db, tx["_id"], admin, "Damaged")
    assert refunded["status"] == "refunded"
    assert orders.get_order(db, order["_id"])["payment_status"] == "refunded"
    with pytest.raises(ValidationError):
        payments.process_refund(db, tx["_id"], admin)


def test_resolve_shipping_address_uses_default(db, customer):
    import accounts

    accounts.add_address(db, customer, {
        "full_name": "Home", "phone": "1", "street": "1 A St", "city": "Hue", "zip_code": "530000",
    })
    user = accounts.get_user(db, customer["_id"])
    resolved = orders.resolve_shipping_address(user, None, None)
    assert resolved["postal_code"] == "530000"
    assert resolved["country"] == "Vietnam"


def test_resolve_shipping_address_requires_one(customer):
    with pytest.raises(ValidationError, match="Complete shipping address is required"):
        orders.resolve_shipping_address(customer, None, None)


def test_user_order_stats(db, customer, admin, product, address):
    first = _checkout(db, customer, address, (product, 1))
    _checkout(db, customer, address, (product, 1))
    orders.mark_as_paid(db, first["_id"], admin)
    stats = orders.user_order_stats(db, str(customer["_id"]))
    assert stats["total_orders"] == 2
    assert stats["total_spent"] == first["pricing"]["total"]


def test_product_report_counts_sold_units(db, customer, category, address):
    import reports

    a = make_product(db, category, name="Card A", sku="A")
    b = make_product(db, category, name="Card B", sku="B", stock=4)
    _checkout(db, customer, address, (a, 2), (b, 1))
    _checkout(db, customer, address, (a, 3))
    report = reports.product_report(db)
    top = report["top_sellers"]
    assert [(row["name"], row["quantity_sold"]) for row in top] == [("Card A", 5), ("Card B", 1)]
    assert report["low_stock_count"] == 1


def test_checkout_refuses_cart_changed_after_validation(db, customer, product, address, monkeypatch):
    carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 3)

    real_validate = orders.validate_cart
    # another request writes the cart between validation and the claim
    def validate_then_touch(database, c):
        result = real_validate(database, c)
        database["cart"].update_one({"_id": c["_id"]}, {"$inc": {"version": 1}})
        return result

    monkeypatch.setattr(orders, "validate_cart", validate_then_touch)
    with pytest.raises(ConflictError, match="Cart changed during checkout"):
        orders.create_order_from_cart(db, customer, address)

    assert db["order"].count_documents({}) == 0
    assert _stock(db, product) == (20, 3)
    assert len(carts.find_cart(db, user_id=customer["_id"])["items"]) == 1


def test_checkout_rolls_back_when_order_insert_fails(db, customer, product, address, monkeypatch):
    carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 3)

    def broken_insert(database, collection, data):
        raise RuntimeError("write failed")

    monkeypatch.setattr(orders, "create_document", broken_insert)
    with pytest.raises(RuntimeError):
        orders.create_order_from_cart(db, customer, address)

    assert db["order"].count_documents({}) == 0
    assert _stock(db, product) == (20, 3)
    assert carts.find_cart(db, user_id=customer["_id"])["items"][0]["quantity"] == 3


def test_checkout_rollback_releases_holds_when_cart_moved_on(db, customer, product, address, monkeypatch):
    carts.add_item(db, carts.get_or_create_cart(db, user_id=customer["_id"]), str(product["_id"]), 3)

    def insert_after_cart_write(database, collection, data):
        database["cart"].update_one({"user_id": str(customer["_id"])}, {"$inc": {"version": 1}})
        raise RuntimeError("write failed")

    monkeypatch.setattr(orders, "create_document", insert_after_cart_write)
    with pytest.raises(RuntimeError):
        orders.create_order_from_cart(db, customer, address)

    assert carts.find_cart(db, user_id=customer["_id"])["items"] == []
    assert _stock(db, product) == (20, 0)


def test_customer_report_ranks_only_orders_in_range(db, customer, admin, product, address):
    import reports
    from conftest import make_user
    from database import utcnow

    other = make_user(db, "other@example.com")
    old = _checkout(db, customer, address, (product, 3))
    recent = _checkout(db, other, address, (product, 1))
    orders.mark_as_paid(db, old["_id"], admin)
    orders.mark_as_paid(db, recent["_id"], admin)
    db["order"].update_one({"_id": old["_id"]}, {"$set": {"created_at": utcnow() - timedelta(days=90)}})

    top = reports.customer_report(db)["top_customers"]
    assert [row["email"] for row in top] == ["other@example.com"]

    wide = reports.customer_report(db, start=utcnow() - timedelta(days=365))["top_customers"]
    assert [row["email"] for row in wide] == ["customer@example.com", "other@example.com"]
