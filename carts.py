"""
Shopping carts for signed-in users and guests.

A cart belongs either to a user (`user_id`) or to an anonymous session
(`session_id`). Adding or growing a line reserves stock, shrinking or
removing a line releases it, so the units in a cart are always held against
the product. Every write is conditional on `version` and bumps it: a write
based on a stale read reloads the cart and tries again, and checkout uses
the same counter to claim a cart snapshot exactly once.
"""
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument

from catalog import final_price
from config import CART_UPDATE_RETRIES, FREE_SHIPPING_THRESHOLD, SHIPPING_FEE, TAX_RATE
from database import parse_object_id, serialize_doc, utcnow
from errors import AppError, ConflictError, NotFoundError, ValidationError
from inventory import product_available, release_stock, reserve_stock
from logger import get_logger
from schemas import Cart

logger = get_logger("carts")


def owner_filter(user_id: Optional[str] = None, session_id: Optional[str] = None) -> dict:
    if user_id:
        return {"user_id": str(user_id)}
    if session_id:
        return {"session_id": session_id, "user_id": None}
    raise ValidationError("Cart owner is required")


def find_cart(db, user_id=None, session_id=None) -> Optional[dict]:
    return db["cart"].find_one(owner_filter(user_id, session_id))


def get_or_create_cart(db, user_id=None, session_id=None) -> dict:
    query = owner_filter(user_id, session_id)
    now = utcnow()
    cart = Cart(user_id=str(user_id) if user_id else None, session_id=None if user_id else session_id)
    fields = {k: v for k, v in cart.model_dump().items() if k not in query}
    return db["cart"].find_one_and_update(
        query,
        {"$setOnInsert": {**fields, "created_at": now, "updated_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def _save_if_unchanged(db, cart: dict, items: list) -> Optional[dict]:
    """Write the lines only if nobody else wrote the cart since `cart` was read."""
    return db["cart"].find_one_and_update(
        {"_id": cart["_id"], "version": cart.get("version", 0)},
        {"$set": {"items": items, "updated_at": utcnow()}, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )


def _with_retries(db, cart: dict, attempt) -> dict:
    """Run `attempt(cart)` until its write wins, reloading the cart after each lost race."""
    for n in range(CART_UPDATE_RETRIES):
        updated = attempt(cart)
        if updated is not None:
            return updated
        logger.debug("Cart %s changed during write (attempt %s), reloading", cart["_id"], n + 1)
        cart = db["cart"].find_one({"_id": cart["_id"]})
        if cart is None:
            raise NotFoundError("Cart not found")
    raise ConflictError("Cart changed concurrently, please retry")


def _find_line(cart: dict, item_id) -> dict:
    oid = parse_object_id(item_id, "cart item")
    for line in cart.get("items", []):
        if line["_id"] == oid:
            return line
    raise NotFoundError("Item not found in cart")


def add_item(db, cart: dict, product_id: str, quantity: int = 1) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    product_oid = parse_object_id(product_id, "product")
    pid = str(product_oid)

    def attempt(current):
        items = [dict(i) for i in current.get("items", [])]
        for line in items:
            if line["product_id"] == pid:
                line["quantity"] += quantity
                break
        else:
            items.append({"_id": ObjectId(), "product_id": pid, "quantity": quantity, "added_at": utcnow()})
        return _save_if_unchanged(db, current, items)

    reserve_stock(db, product_oid, quantity)
    try:
        return _with_retries(db, cart, attempt)
    except AppError:
        release_stock(db, product_oid, quantity)
        raise


def update_item_quantity(db, cart: dict, item_id, quantity: int) -> dict:
    if quantity < 1:
        raise ValidationError("Valid quantity is required")

    def attempt(current):
        line = _find_line(current, item_id)
        delta = quantity - line["quantity"]
        if delta > 0:
            reserve_stock(db, line["product_id"], delta)
        items = [dict(i, quantity=quantity) if i["_id"] == line["_id"] else i for i in current["items"]]
        updated = _save_if_unchanged(db, current, items)
        if updated is None:
            if delta > 0:
                _release_quietly(db, line["product_id"], delta)
        elif delta < 0:
            _release_quietly(db, line["product_id"], -delta)
        return updated

    return _with_retries(db, cart, attempt)


def remove_item(db, cart: dict, item_id) -> dict:
    def attempt(current):
        line = _find_line(current, item_id)
        items = [i for i in current["items"] if i["_id"] != line["_id"]]
        updated = _save_if_unchanged(db, current, items)
        if updated is not None:
            _release_quietly(db, line["product_id"], line["quantity"])
        return updated

    return _with_retries(db, cart, attempt)


def clear_cart(db, cart: dict) -> dict:
    def attempt(current):
        updated = _save_if_unchanged(db, current, [])
        if updated is not None:
            for line in current.get("items", []):
                _release_quietly(db, line["product_id"], line["quantity"])
        return updated

    return _with_retries(db, cart, attempt)


def _release_quietly(db, product_id, quantity: int) -> None:
    """Release a hold; a product deleted since it was carted has nothing left to release."""
    try:
        release_stock(db, product_id, quantity)
    except NotFoundError:
        logger.warning("Product %s vanished while releasing %s reserved units", product_id, quantity)


def merge_guest_cart(db, session_id: str, user_id: str) -> dict:
    """Fold the guest cart into the user's cart, summing quantities per product.

    Units in the guest cart are already reserved, so only the ownership moves.
    The guest cart is deleted afterwards.
    """
    user_cart = get_or_create_cart(db, user_id=user_id)
    guest = db["cart"].find_one_and_delete(owner_filter(session_id=session_id))
    if not guest or not guest.get("items"):
        return user_cart

    def attempt(current):
        items = [dict(i) for i in current.get("items", [])]
        by_product = {i["product_id"]: i for i in items}
        for line in guest["items"]:
            existing = by_product.get(line["product_id"])
            if existing:
                existing["quantity"] += line["quantity"]
            else:
                merged = dict(line)
                items.append(merged)
                by_product[merged["product_id"]] = merged
        return _save_if_unchanged(db, current, items)

    try:
        merged_cart = _with_retries(db, user_cart, attempt)
    except AppError:
        # the guest keeps its lines and their holds
        db["cart"].insert_one(guest)
        raise
    logger.info("Merged guest cart %s into user %s (%s lines)", session_id, user_id, len(guest["items"]))
    return merged_cart


def _load_products(db, cart: dict) -> dict:
    ids = [parse_object_id(i["product_id"]) for i in cart.get("items", [])]
    if not ids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}


def compute_totals(subtotal: float) -> dict:
    subtotal = round(subtotal, 2)
    tax = round(subtotal * TAX_RATE, 2)
    shipping = 0.0 if subtotal == 0 or subtotal >= FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    return {"subtotal": subtotal, "tax": tax, "shipping": shipping, "total": round(subtotal + tax + shipping, 2)}


def priced_lines(db, cart: dict):
    """Pair every cart line with its live product; the product is None when it was deleted."""
    products = _load_products(db, cart)
    return [(line, products.get(line["product_id"])) for line in cart.get("items", [])]


def cart_view(db, cart: dict) -> dict:
    lines = []
    subtotal = 0.0
    for line, product in priced_lines(db, cart):
        entry = serialize_doc(line)
        if product is not None:
            price = final_price(product)
            entry["product"] = {
                "id": str(product["_id"]),
                "name": product.get("name"),
                "slug": product.get("slug"),
                "image": (product.get("images") or [None])[0],
                "price": product.get("price"),
                "final_price": price,
                "stock_status": product.get("stock_status"),
            }
            entry["line_total"] = round(price * line["quantity"], 2)
            subtotal += entry["line_total"]
        else:
            entry["product"] = None
            entry["line_total"] = 0
        lines.append(entry)
    data = serialize_doc({k: v for k, v in cart.items() if k != "items"})
    data["items"] = lines
    data["item_count"] = item_count(cart)
    data["totals"] = compute_totals(subtotal)
    return data


def item_count(cart: Optional[dict]) -> int:
    if not cart:
        return 0
    return sum(i["quantity"] for i in cart.get("items", []))


def validate_cart(db, cart: dict) -> dict:
    """Check every line against live inventory without touching the cart."""
    errors = []
    issues = []
    for line, product in priced_lines(db, cart):
        item_id = str(line["_id"])
        if product is None:
            errors.append("Product not found (possibly deleted).")
            issues.append({"item_id": item_id, "product_id": line["product_id"], "reason": "removed"})
            continue
        name = product.get("name")
        if not product.get("is_active", True) or product.get("stock_status") == "discontinued":
            errors.append(f"Product \"{name}\" is no longer available.")
            issues.append({"item_id": item_id, "product_id": line["product_id"], "reason": "inactive"})
            continue
        # this line's own units are part of `reserved`
        available = product_available(product) + line["quantity"]
        available = min(available, product.get("stock", 0))
        if available <= 0:
            errors.append(f"Product \"{name}\" is out of stock.")
            issues.append({"item_id": item_id, "product_id": line["product_id"], "reason": "out_of_stock",
                           "available": 0, "requested": line["quantity"]})
        elif line["quantity"] > available:
            errors.append(
                f"Not enough stock for \"{name}\". Available: {available}, requested: {line['quantity']}"
            )
            issues.append({"item_id": item_id, "product_id": line["product_id"], "reason": "insufficient_stock",
                           "available": available, "requested": line["quantity"]})
    return {"is_valid": not errors, "errors": errors, "issues": issues}


def check_product(cart: Optional[dict], product_id: str) -> dict:
    for line in (cart or {}).get("items", []):
        if line["product_id"] == product_id:
            return {"in_cart": True, "quantity": line["quantity"]}
    return {"in_cart": False, "quantity": 0}


def save_for_later(db, user: dict, item_id) -> dict:
    cart = get_or_create_cart(db, user_id=user["_id"])
    line = _find_line(cart, item_id)
    db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": line["product_id"]}})
    cart = remove_item(db, cart, item_id)
    wishlist = db["user"].find_one({"_id": user["_id"]}, {"wishlist": 1}).get("wishlist", [])
    return {"cart": cart, "wishlist_count": len(wishlist)}


def move_to_cart(db, user: dict, product_id: str, quantity: int = 1) -> dict:
    cart = get_or_create_cart(db, user_id=user["_id"])
    cart = add_item(db, cart, product_id, quantity)
    db["user"].update_one({"_id": user["_id"]}, {"$pull": {"wishlist": str(parse_object_id(product_id, "product"))}})
    return cart
