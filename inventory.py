"""
Stock bookkeeping for products.

A product carries on-hand `stock` and `reserved` (held by open carts).
Availability is `max(0, stock - reserved)` and `stock_status` is derived from
it. Every persistent change is a compare-and-set: the update only applies if
`stock` and `reserved` still hold the values that were read, so two requests
can never both spend the same unit. Lost races are retried a bounded number
of times and then reported as a conflict.
"""
from typing import Callable, Tuple

from config import LOW_STOCK_THRESHOLD, STOCK_UPDATE_RETRIES
from database import parse_object_id, utcnow
from errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from logger import get_logger

logger = get_logger("inventory")

IN_STOCK = "in-stock"
LOW_STOCK = "low-stock"
OUT_OF_STOCK = "out-of-stock"
DISCONTINUED = "discontinued"


def available_stock(stock: int, reserved: int) -> int:
    return max(0, (stock or 0) - (reserved or 0))


def compute_stock_status(stock: int, reserved: int, low_stock_threshold: int = LOW_STOCK_THRESHOLD) -> str:
    available = available_stock(stock, reserved)
    if available == 0:
        return OUT_OF_STOCK
    if available <= low_stock_threshold:
        return LOW_STOCK
    return IN_STOCK


def product_available(product: dict) -> int:
    return available_stock(product.get("stock", 0), product.get("reserved", 0))


def can_fulfill(product: dict, quantity: int) -> bool:
    return product.get("is_active", True) and product_available(product) >= quantity


def status_for(product: dict, stock: int, reserved: int) -> str:
    # discontinued is set by an admin and survives stock movements
    if product.get("stock_status") == DISCONTINUED:
        return DISCONTINUED
    return compute_stock_status(stock, reserved, product.get("low_stock_threshold", LOW_STOCK_THRESHOLD))


def stock_snapshot(product: dict) -> dict:
    available = product_available(product)
    return {
        "product_id": str(product["_id"]),
        "total_stock": product.get("stock", 0),
        "reserved": product.get("reserved", 0),
        "available": available,
        "stock_status": product.get("stock_status", IN_STOCK),
        "is_available": available > 0,
    }


def _check_quantity(quantity) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    return quantity


def _compare_and_set(db, product_id, change: Callable[[dict, int, int], Tuple[int, int]], action: str) -> dict:
    """Apply `change(product, stock, reserved) -> (stock, reserved)` atomically against the read values."""
    oid = parse_object_id(product_id, "product")
    for attempt in range(STOCK_UPDATE_RETRIES):
        product = db["product"].find_one({"_id": oid})
        if not product:
            raise NotFoundError("Product not found")
        stock = product.get("stock", 0)
        reserved = product.get("reserved", 0)
        new_stock, new_reserved = change(product, stock, reserved)
        update = {
            "stock": new_stock,
            "reserved": new_reserved,
            "stock_status": status_for(product, new_stock, new_reserved),
            "updated_at": utcnow(),
        }
        result = db["product"].update_one(
            {"_id": oid, "stock": stock, "reserved": reserved},
            {"$set": update},
        )
        if result.matched_count:
            product.update(update)
            logger.info(
                "%s product=%s stock %s->%s reserved %s->%s",
                action, oid, stock, new_stock, reserved, new_reserved,
            )
            return product
        logger.debug("%s product=%s lost a concurrent update (attempt %s), retrying", action, oid, attempt + 1)
    raise ConflictError("Stock changed concurrently, please retry")


def reserve_stock(db, product_id, quantity: int) -> dict:
    """Hold `quantity` units for a cart. Fails when fewer units are available."""
    quantity = _check_quantity(quantity)

    def change(product, stock, reserved):
        if not product.get("is_active", True):
            raise ValidationError(f"Product \"{product.get('name')}\" is not available")
        if available_stock(stock, reserved) < quantity:
            raise InsufficientStockError(
                "Insufficient stock available",
                [{"product_id": str(product["_id"]), "available": available_stock(stock, reserved), "requested": quantity}],
            )
        return stock, reserved + quantity

    return _compare_and_set(db, product_id, change, "reserve")


def release_stock(db, product_id, quantity: int) -> dict:
    """Give back held units; reserved never drops below zero."""
    quantity = _check_quantity(quantity)
    return _compare_and_set(db, product_id, lambda p, s, r: (s, max(0, r - quantity)), "release")


def commit_stock(db, product_id, quantity: int) -> dict:
    """Turn a reservation into a sale: units leave on-hand stock and the hold."""
    quantity = _check_quantity(quantity)

    def change(product, stock, reserved):
        if stock < quantity:
            raise InsufficientStockError(f"Not enough stock for \"{product.get('name')}\"")
        return stock - quantity, max(0, reserved - quantity)

    return _compare_and_set(db, product_id, change, "commit")


def restock(db, product_id, quantity: int, hold: bool = False) -> dict:
    """Return sold units to on-hand stock; with `hold` they go straight back into a reservation."""
    quantity = _check_quantity(quantity)
    return _compare_and_set(
        db, product_id,
        lambda p, s, r: (s + quantity, r + quantity if hold else r),
        "restock",
    )


def adjust_stock(db, product_id, quantity: int, operation: str) -> dict:
    """Admin stock correction: add, subtract or set on-hand stock."""
    if not isinstance(quantity, int) or quantity < 0:
        raise ValidationError("Invalid quantity")

    def change(product, stock, reserved):
        if operation == "add":
            return stock + quantity, reserved
        if operation == "subtract":
            if stock - quantity < 0:
                raise ValidationError("Stock cannot go negative")
            return stock - quantity, reserved
        if operation == "set":
            return quantity, reserved
        raise ValidationError("Invalid operation")

    return _compare_and_set(db, product_id, change, f"adjust:{operation}")


def low_stock_products(db) -> list:
    return list(
        db["product"].find(
            {"stock_status": {"$in": [LOW_STOCK, OUT_OF_STOCK]}},
            {"name": 1, "sku": 1, "stock": 1, "reserved": 1, "low_stock_threshold": 1, "stock_status": 1},
        ).sort([("stock", 1)])
    )
