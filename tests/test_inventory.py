import pytest

import inventory
from errors import ConflictError, InsufficientStockError, ValidationError


def test_available_stock_never_negative():
    assert inventory.available_stock(10, 3) == 7
    assert inventory.available_stock(2, 5) == 0


@pytest.mark.parametrize("stock,reserved,expected", [
    (0, 0, "out-of-stock"),
    (5, 5, "out-of-stock"),
    (10, 0, "low-stock"),
    (15, 6, "low-stock"),
    (11, 0, "in-stock"),
])
def test_compute_stock_status(stock, reserved, expected):
    assert inventory.compute_stock_status(stock, reserved, 10) == expected


def test_can_fulfill_ignores_inactive_products():
    assert inventory.can_fulfill({"stock": 5, "reserved": 0, "is_active": True}, 5)
    assert not inventory.can_fulfill({"stock": 5, "reserved": 1, "is_active": True}, 5)
    assert not inventory.can_fulfill({"stock": 5, "reserved": 0, "is_active": False}, 1)


def test_reserve_and_release(db, product):
    updated = inventory.reserve_stock(db, product["_id"], 4)
    assert updated["reserved"] == 4
    assert db["product"].find_one({"_id": product["_id"]})["reserved"] == 4

    inventory.release_stock(db, product["_id"], 10)
    assert db["product"].find_one({"_id": product["_id"]})["reserved"] == 0


def test_reserve_more_than_available_fails(db, product):
    inventory.reserve_stock(db, product["_id"], 18)
    with pytest.raises(InsufficientStockError) as exc:
        inventory.reserve_stock(db, product["_id"], 3)
    assert exc.value.errors[0]["available"] == 2
    assert db["product"].find_one({"_id": product["_id"]})["reserved"] == 18


def test_reserve_rejects_bad_quantity(db, product):
    with pytest.raises(ValidationError):
        inventory.reserve_stock(db, product["_id"], 0)


def test_commit_moves_reservation_into_sale(db, product):
    inventory.reserve_stock(db, product["_id"], 5)
    updated = inventory.commit_stock(db, product["_id"], 5)
    assert updated["stock"] == 15
    assert updated["reserved"] == 0


def test_status_follows_stock_changes(db, product):
    inventory.reserve_stock(db, product["_id"], 12)
    assert db["product"].find_one({"_id": product["_id"]})["stock_status"] == "low-stock"
    inventory.reserve_stock(db, product["_id"], 8)
    assert db["product"].find_one({"_id": product["_id"]})["stock_status"] == "out-of-stock"


def test_discontinued_survives_stock_moves(db, product):
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"stock_status": "discontinued"}})
    inventory.restock(db, product["_id"], 5)
    assert db["product"].find_one({"_id": product["_id"]})["stock_status"] == "discontinued"


def test_adjust_stock(db, product):
    assert inventory.adjust_stock(db, product["_id"], 5, "add")["stock"] == 25
    assert inventory.adjust_stock(db, product["_id"], 10, "subtract")["stock"] == 15
    assert inventory.adjust_stock(db, product["_id"], 3, "set")["stock"] == 3
    with pytest.raises(ValidationError, match="Stock cannot go negative"):
        inventory.adjust_stock(db, product["_id"], 4, "subtract")
    with pytest.raises(ValidationError, match="Invalid operation"):
        inventory.adjust_stock(db, product["_id"], 1, "multiply")


def test_lost_updates_end_in_conflict(db, product, monkeypatch):
    """A write that never matches the values it read is retried, then reported."""

    class Missed:
        matched_count = 0

    class StaleProducts:
        def find_one(self, *args, **kwargs):
            return db["product"].find_one(*args, **kwargs)

        def update_one(self, *args, **kwargs):
            return Missed()

    monkeypatch.setattr(inventory, "STOCK_UPDATE_RETRIES", 3)
    with pytest.raises(ConflictError):
        inventory.reserve_stock({"product": StaleProducts()}, product["_id"], 1)
    assert db["product"].find_one({"_id": product["_id"]})["reserved"] == 0
