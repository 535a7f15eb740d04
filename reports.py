"""Admin reports over orders, products and customers."""
from datetime import datetime, timedelta
from typing import Optional

from bson import ObjectId

from database import as_utc, utcnow
from inventory import LOW_STOCK, OUT_OF_STOCK

# orders that count as sales
SALE_FILTER = {"status": {"$ne": "cancelled"}}


def _date_range(start: Optional[datetime], end: Optional[datetime], default_days: int = 30):
    end = as_utc(end) or utcnow()
    start = as_utc(start) or end - timedelta(days=default_days)
    return start, end


def sales_report(db, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    start, end = _date_range(start, end)
    in_range = {"created_at": {"$gte": start, "$lte": end}}
    totals = list(db["order"].aggregate([
        {"$match": {**in_range, **SALE_FILTER}},
        {"$group": {"_id": None, "orders": {"$sum": 1}, "revenue": {"$sum": "$pricing.total"}}},
    ]))
    by_status = {
        row["_id"]: row["count"] for row in db["order"].aggregate([
            {"$match": in_range},
            {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        ])
    }
    row = totals[0] if totals else {"orders": 0, "revenue": 0}
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "total_orders": row["orders"],
        "total_revenue": round(row["revenue"], 2),
        "average_order_value": round(row["revenue"] / row["orders"], 2) if row["orders"] else 0,
        "by_status": by_status,
    }


def product_report(db, limit: int = 10) -> dict:
    top = list(db["order"].aggregate([
        {"$match": SALE_FILTER},
        {"$unwind": "$items"},
        {"$group": {"_id": "$items.product_id", "name": {"$first": "$items.name"},
                    "quantity_sold": {"$sum": "$items.quantity"}, "revenue": {"$sum": "$items.subtotal"}}},
        {"$sort": {"quantity_sold": -1}},
        {"$limit": limit},
    ]))
    return {
        "top_sellers": [
            {"product_id": r["_id"], "name": r["name"], "quantity_sold": r["quantity_sold"],
             "revenue": round(r["revenue"], 2)}
            for r in top
        ],
        "total_products": db["product"].count_documents({}),
        "active_products": db["product"].count_documents({"is_active": True}),
        "low_stock_count": db["product"].count_documents({"stock_status": LOW_STOCK}),
        "out_of_stock_count": db["product"].count_documents({"stock_status": OUT_OF_STOCK}),
    }


def customer_report(db, limit: int = 10, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    start, end = _date_range(start, end)
    in_range = {"created_at": {"$gte": start, "$lte": end}}
    top = list(db["order"].aggregate([
        {"$match": {**in_range, "payment_status": "paid"}},
        {"$group": {"_id": "$user_id", "orders": {"$sum": 1}, "total_spent": {"$sum": "$pricing.total"}}},
        {"$sort": {"total_spent": -1}},
        {"$limit": limit},
    ]))
    ids = [ObjectId(r["_id"]) for r in top if ObjectId.is_valid(r["_id"])]
    users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": ids}}, {"first_name": 1, "last_name": 1, "email": 1})}
    top_customers = []
    for r in top:
        u = users.get(r["_id"], {})
        top_customers.append({
            "user_id": r["_id"],
            "name": f"{u.get('first_name', '')} {u.get('last_name', '')}".strip() or None,
            "email": u.get("email"),
            "orders": r["orders"],
            "total_spent": round(r["total_spent"], 2),
        })
    return {
        "top_customers": top_customers,
        "total_customers": db["user"].count_documents({"role": "customer"}),
        "new_customers": db["user"].count_documents({**in_range, "role": "customer"}),
        "customers_with_orders": len(db["order"].distinct("user_id")),
    }


def revenue_report(db, period: str = "day", start: Optional[datetime] = None, end: Optional[datetime] = None) -> list:
    start, end = _date_range(start, end)
    fmt = "%Y-%m" if period == "month" else "%Y-%m-%d"
    buckets = {}
    for order in db["order"].find({"payment_status": "paid", "created_at": {"$gte": start, "$lte": end}},
                                  {"created_at": 1, "pricing": 1}):
        key = as_utc(order["created_at"]).strftime(fmt)
        bucket = buckets.setdefault(key, {"period": key, "orders": 0, "revenue": 0.0})
        bucket["orders"] += 1
        bucket["revenue"] += order["pricing"]["total"]
    rows = sorted(buckets.values(), key=lambda b: b["period"])
    for row in rows:
        row["revenue"] = round(row["revenue"], 2)
    return rows
