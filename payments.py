"""Payment transactions recorded against orders, and refunds."""
from datetime import timedelta
from typing import Optional

from pymongo import DESCENDING

from database import create_document, paginate, parse_object_id, utcnow, as_utc
from errors import ConflictError, NotFoundError, ValidationError
from logger import get_logger
from orders import get_order, history_entry
from schemas import Transaction

logger = get_logger("payments")


def record_transaction(db, order: dict, reference: Optional[str] = None) -> dict:
    tx = Transaction(
        order_id=str(order["_id"]),
        order_number=order["order_number"],
        user_id=order["user_id"],
        amount=order["pricing"]["total"],
        method=order["payment_method"],
        reference=reference,
    )
    tx_id = create_document(db, "transaction", tx)
    logger.info("Recorded payment %s for order %s: %.2f", tx_id, order["order_number"], tx.amount)
    return db["transaction"].find_one({"_id": parse_object_id(tx_id)})


def get_transaction(db, transaction_id) -> dict:
    tx = db["transaction"].find_one({"_id": parse_object_id(transaction_id, "transaction")})
    if not tx:
        raise NotFoundError("Transaction not found")
    return tx


def list_transactions(db, status: Optional[str] = None, method: Optional[str] = None,
                      page: int = 1, limit: int = 20) -> dict:
    filter_q = {}
    if status:
        filter_q["status"] = status
    if method:
        filter_q["method"] = method
    return paginate(db["transaction"], filter_q, page, limit, sort=[("created_at", DESCENDING)])


def payment_stats(db) -> dict:
    by_status = {
        row["_id"]: row for row in db["transaction"].aggregate([
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "amount": {"$sum": "$amount"}}},
        ])
    }
    by_method = [
        {"method": row["_id"], "count": row["count"], "amount": round(row["amount"], 2)}
        for row in db["transaction"].aggregate([
            {"$match": {"status": "completed"}},
            {"$group": {"_id": "$method", "count": {"$sum": 1}, "amount": {"$sum": "$amount"}}},
            {"$sort": {"amount": -1}},
        ])
    ]
    completed = by_status.get("completed", {})
    refunded = by_status.get("refunded", {})
    return {
        "completed_count": completed.get("count", 0),
        "completed_amount": round(completed.get("amount", 0), 2),
        "refunded_count": refunded.get("count", 0),
        "refunded_amount": round(refunded.get("amount", 0), 2),
        "by_method": by_method,
        "awaiting_refund": db["order"].count_documents({"payment_status": "refund_pending"}),
    }


def process_refund(db, transaction_id, admin: dict, reason: Optional[str] = None) -> dict:
    tx = get_transaction(db, transaction_id)
    if tx["status"] != "completed":
        raise ValidationError("Only completed transactions can be refunded")
    now = utcnow()
    result = db["transaction"].update_one(
        {"_id": tx["_id"], "status": "completed"},
        {"$set": {"status": "refunded", "refund_reason": reason, "refunded_at": now, "updated_at": now}},
    )
    if not result.matched_count:
        raise ConflictError("Transaction changed concurrently, please retry")
    order = get_order(db, tx["order_id"])
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"payment_status": "refunded", "refunded_at": now, "updated_at": now},
         "$push": {"status_history": history_entry(order["status"], f"Payment refunded: {reason or 'no reason given'}",
                                                   admin["_id"])}},
    )
    logger.info("Refunded transaction %s (order %s, %.2f)", tx["_id"], tx["order_number"], tx["amount"])
    return get_transaction(db, tx["_id"])


def revenue_by_day(db, days: int = 30) -> list:
    """Net revenue per day: completed payments minus refunds issued that day."""
    since = (utcnow() - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    buckets = {}
    for tx in db["transaction"].find({"created_at": {"$gte": since}}):
        day = as_utc(tx["created_at"]).strftime("%Y-%m-%d")
        bucket = buckets.setdefault(day, {"date": day, "payments": 0.0, "refunds": 0.0, "count": 0})
        bucket["payments"] += tx["amount"]
        bucket["count"] += 1
    for tx in db["transaction"].find({"status": "refunded", "refunded_at": {"$gte": since}}):
        day = as_utc(tx["refunded_at"]).strftime("%Y-%m-%d")
        bucket = buckets.setdefault(day, {"date": day, "payments": 0.0, "refunds": 0.0, "count": 0})
        bucket["refunds"] += tx["amount"]
    rows = sorted(buckets.values(), key=lambda b: b["date"])
    for row in rows:
        row["payments"] = round(row["payments"], 2)
        row["refunds"] = round(row["refunds"], 2)
        row["net"] = round(row["payments"] - row["refunds"], 2)
    return rows
