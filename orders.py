"""
Checkout and the order lifecycle.

    pending -> paid -> shipped -> delivered
       |        |
       +--------+--> cancelled

Orders are immutable snapshots of a cart; only status, payment status,
tracking and the status history change afterwards. Status changes are
conditioned on the status that was read, so two concurrent transitions
cannot both apply.
"""
import secrets
from typing import Optional

from pymongo import DESCENDING

from carts import compute_totals, find_cart, priced_lines, validate_cart
from catalog import final_price
from database import create_document, paginate, parse_object_id, serialize_doc, utcnow
from errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from inventory import commit_stock, release_stock, restock
from logger import get_logger
from schemas import Order, OrderItem, Pricing, ShippingAddress

logger = get_logger("orders")

PENDING = "pending"
PAID = "paid"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"

TRANSITIONS = {
    PENDING: {PAID, CANCELLED},
    PAID: {SHIPPED, CANCELLED},
    SHIPPED: {DELIVERED},
    DELIVERED: set(),
    CANCELLED: set(),
}
CANCELLABLE_STATUSES = (PENDING, PAID)


def can_be_cancelled(order: dict) -> bool:
    return order.get("status") in CANCELLABLE_STATUSES


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, set())


def new_order_number() -> str:
    return f"ORD-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


def history_entry(status: str, note: Optional[str], actor_id=None) -> dict:
    return {"status": status, "note": note, "changed_by": str(actor_id) if actor_id else None, "at": utcnow()}


def order_view(order: dict) -> dict:
    data = serialize_doc(order)
    data["can_be_cancelled"] = can_be_cancelled(order)
    return data


def get_order(db, order_id) -> dict:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order")})
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order_for(db, order_id, user: dict) -> dict:
    order = get_order(db, order_id)
    if order["user_id"] != str(user["_id"]) and user.get("role") != "admin":
        raise PermissionDenied("Not authorized to view this order")
    return order


def resolve_shipping_address(user: dict, shipping_address: Optional[dict], address_id: Optional[str]) -> dict:
    """Pick the explicit address, a saved one by id, or the user's default."""
    if shipping_address:
        return ShippingAddress(**shipping_address).model_dump()
    saved = user.get("addresses", [])
    if address_id:
        oid = parse_object_id(address_id, "address")
        chosen = next((a for a in saved if a["_id"] == oid), None)
        if chosen is None:
            raise NotFoundError("Address not found")
    else:
        chosen = next((a for a in saved if a.get("is_default")), saved[0] if saved else None)
    if chosen is None or not chosen.get("zip_code"):
        raise ValidationError("Complete shipping address is required")
    return ShippingAddress(
        full_name=chosen["full_name"],
        phone=chosen["phone"],
        street=chosen["street"],
        city=chosen["city"],
        state=chosen.get("state"),
        postal_code=chosen["zip_code"],
        country=chosen.get("country") or "Vietnam",
    ).model_dump()


def create_order_from_cart(db, user: dict, shipping_address: dict, payment_method: str = "cod",
                           customer_note: Optional[str] = None) -> dict:
    """Convert the user's cart into an order.

    The cart is claimed by a compare-and-set on its version, reserved units
    become sold units, and the cart is left empty. If anything after the
    claim fails, committed units go back into reservation and the cart is
    restored.
    """
    cart = find_cart(db, user_id=user["_id"])
    if not cart or not cart.get("items"):
        raise ValidationError("Cart is empty")
    validation = validate_cart(db, cart)
    if not validation["is_valid"]:
        raise ValidationError("Cart validation failed", validation["errors"])

    lines = priced_lines(db, cart)
    claimed = db["cart"].find_one_and_update(
        {"_id": cart["_id"], "version": cart.get("version", 0)},
        {"$set": {"items": [], "updated_at": utcnow()}, "$inc": {"version": 1}},
    )
    if claimed is None:
        raise ConflictError("Cart changed during checkout, please retry")

    committed = []
    try:
        for line, product in lines:
            commit_stock(db, line["product_id"], line["quantity"])
            committed.append(line)
        order = _build_order(user, lines, shipping_address, payment_method, customer_note)
        order_id = create_document(db, "order", order)
    except Exception:
        _roll_back_checkout(db, cart, claimed.get("version", 0) + 1, committed)
        logger.warning("Checkout for user %s rolled back after committing %s lines", user["_id"], len(committed))
        raise

    logger.info("Order %s (%s) created for user %s, total %.2f",
                order.order_number, order_id, user["_id"], order.pricing.total)
    return get_order(db, order_id)


def _build_order(user: dict, lines, shipping_address: dict, payment_method: str,
                 customer_note: Optional[str]) -> Order:
    items = []
    for line, product in lines:
        price = final_price(product)
        items.append(OrderItem(
            product_id=line["product_id"],
            name=product["name"],
            sku=product.get("sku"),
            price=price,
            quantity=line["quantity"],
            subtotal=round(price * line["quantity"], 2),
            image=(product.get("images") or [None])[0],
        ))
    totals = compute_totals(sum(i.subtotal for i in items))
    return Order(
        order_number=new_order_number(),
        user_id=str(user["_id"]),
        items=items,
        shipping_address=ShippingAddress(**shipping_address),
        payment_method=payment_method,
        pricing=Pricing(**totals),
        status_history=[history_entry(PENDING, "Order placed", user["_id"])],
        customer_note=customer_note,
    )


def _roll_back_checkout(db, cart: dict, claimed_version: int, committed: list) -> None:
    """Put committed units back on hold and give the cart its lines back.

    If the emptied cart was written to in the meantime the lines cannot be
    restored, so their holds are released instead.
    """
    for line in committed:
        restock(db, line["product_id"], line["quantity"], hold=True)
    restored = db["cart"].update_one(
        {"_id": cart["_id"], "version": claimed_version},
        {"$set": {"items": cart["items"], "updated_at": utcnow()}, "$inc": {"version": 1}},
    )
    if restored.matched_count:
        return
    logger.warning("Cart %s changed during checkout rollback, releasing its holds", cart["_id"])
    for line in cart["items"]:
        try:
            release_stock(db, line["product_id"], line["quantity"])
        except NotFoundError:
            logger.warning("Product %s vanished while releasing %s reserved units", line["product_id"], line["quantity"])


def _change_status(db, order: dict, new_status: str, note: Optional[str], actor_id, extra: Optional[dict] = None) -> dict:
    update = {"status": new_status, "updated_at": utcnow()}
    update.update(extra or {})
    result = db["order"].update_one(
        {"_id": order["_id"], "status": order["status"]},
        {"$set": update, "$push": {"status_history": history_entry(new_status, note, actor_id)}},
    )
    if not result.matched_count:
        raise ConflictError("Order status changed concurrently, please retry")
    logger.info("Order %s: %s -> %s", order["_id"], order["status"], new_status)
    return get_order(db, order["_id"])


def cancel_order(db, order_id, user: dict, reason: Optional[str] = None, by_admin: bool = False) -> dict:
    """Cancel an early-stage order and put its units back on the shelf."""
    order = get_order(db, order_id)
    if not by_admin and order["user_id"] != str(user["_id"]):
        raise PermissionDenied("Not authorized to cancel this order")
    if not can_be_cancelled(order):
        raise ValidationError(f"Cannot cancel order with status: {order['status']}")
    extra = {"cancelled_at": utcnow(), "cancel_reason": reason or "Customer cancelled"}
    if order.get("payment_status") == "paid":
        extra["payment_status"] = "refund_pending"
    order = _change_status(db, order, CANCELLED, extra["cancel_reason"], user["_id"], extra)
    for item in order["items"]:
        try:
            restock(db, item["product_id"], item["quantity"])
        except NotFoundError:
            logger.warning("Product %s no longer exists, %s units not restocked", item["product_id"], item["quantity"])
    return order


def mark_as_paid(db, order_id, admin: dict, reference: Optional[str] = None) -> dict:
    from payments import record_transaction

    order = get_order(db, order_id)
    if order.get("payment_status") != "unpaid":
        raise ValidationError("Order is already paid")
    if order["status"] != PENDING:
        raise ValidationError(f"Cannot record payment for order with status: {order['status']}")
    order = _change_status(db, order, PAID, "Payment received", admin["_id"],
                           {"payment_status": "paid", "paid_at": utcnow()})
    record_transaction(db, order, reference)
    return order


def update_status(db, order_id, new_status: str, admin: dict, note: Optional[str] = None) -> dict:
    if new_status == CANCELLED:
        return cancel_order(db, order_id, admin, note or "Cancelled by admin", by_admin=True)
    if new_status == PAID:
        return mark_as_paid(db, order_id, admin)
    order = get_order(db, order_id)
    if not can_transition(order["status"], new_status):
        raise ValidationError(f"Cannot change order status from {order['status']} to {new_status}")
    extra = {f"{new_status}_at": utcnow()}
    return _change_status(db, order, new_status, note, admin["_id"], extra)


def add_tracking(db, order_id, carrier: str, tracking_number: str, admin: dict) -> dict:
    """Attach a shipment; a paid order moves to shipped, a shipped one just gets new tracking."""
    order = get_order(db, order_id)
    if order["status"] not in (PAID, SHIPPED):
        raise ValidationError(f"Cannot add tracking to order with status: {order['status']}")
    tracking = {"carrier": carrier, "tracking_number": tracking_number, "added_at": utcnow()}
    if order["status"] == SHIPPED:
        db["order"].update_one({"_id": order["_id"]}, {"$set": {"tracking": tracking, "updated_at": utcnow()}})
        return get_order(db, order["_id"])
    return _change_status(db, order, SHIPPED, f"Shipped with {carrier} ({tracking_number})", admin["_id"],
                          {"tracking": tracking, "shipped_at": utcnow()})


def list_orders(db, filter_q: dict, page: int = 1, limit: int = 10, include_history: bool = False) -> dict:
    projection = None if include_history else {"status_history": 0}
    return paginate(db["order"], filter_q, page, limit, sort=[("created_at", DESCENDING)], projection=projection)


def user_order_stats(db, user_id: str) -> dict:
    by_status = list(db["order"].aggregate([
        {"$match": {"user_id": user_id}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "total_amount": {"$sum": "$pricing.total"}}},
    ]))
    spent = list(db["order"].aggregate([
        {"$match": {"user_id": user_id, "payment_status": "paid"}},
        {"$group": {"_id": None, "total": {"$sum": "$pricing.total"}}},
    ]))
    return {
        "total_orders": db["order"].count_documents({"user_id": user_id}),
        "total_spent": round(spent[0]["total"], 2) if spent else 0,
        "by_status": [{"status": s["_id"], "count": s["count"], "total_amount": round(s["total_amount"], 2)}
                      for s in by_status],
    }


def order_overview(db) -> dict:
    counts = {status: db["order"].count_documents({"status": status}) for status in TRANSITIONS}
    revenue = list(db["order"].aggregate([
        {"$match": {"payment_status": "paid"}},
        {"$group": {"_id": None, "total": {"$sum": "$pricing.total"}, "count": {"$sum": 1}}},
    ]))
    start_of_today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "total_orders": sum(counts.values()),
        "by_status": counts,
        "paid_orders": revenue[0]["count"] if revenue else 0,
        "revenue": round(revenue[0]["total"], 2) if revenue else 0,
        "orders_today": db["order"].count_documents({"created_at": {"$gte": start_of_today}}),
        "awaiting_refund": db["order"].count_documents({"payment_status": "refund_pending"}),
    }
