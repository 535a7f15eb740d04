import re
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

import accounts
import inventory
import orders
import payments
import reports
from database import get_db, serialize_doc
from errors import envelope
from schemas import (
    OrderStatus, OrderStatusUpdate, PaymentMethod, PaymentStatus, PaymentUpdate, RefundRequest, Role, RoleUpdate,
    TrackingUpdate,
)
from security import public_profile, require_admin

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ----------------------- Users -----------------------

@router.get("/users")
def list_users(
    role: Optional[Role] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db=Depends(get_db),
):
    result = accounts.list_users(db, role, is_active, re.escape(search) if search else None, page, limit)
    items = serialize_doc(result.pop("items"))
    return envelope(items, count=len(items), **result)


@router.get("/users/stats")
def user_stats(db=Depends(get_db)):
    return envelope(accounts.user_stats(db))


@router.get("/users/{user_id}")
def user_detail(user_id: str, db=Depends(get_db)):
    return envelope(accounts.user_detail(db, user_id))


@router.patch("/users/{user_id}/activate")
def activate_user(user_id: str, db=Depends(get_db)):
    return envelope(public_profile(accounts.set_active(db, user_id, True)), "User activated")


@router.patch("/users/{user_id}/deactivate")
def deactivate_user(user_id: str, db=Depends(get_db)):
    return envelope(public_profile(accounts.set_active(db, user_id, False)), "User deactivated")


@router.patch("/users/{user_id}/role")
def change_role(user_id: str, body: RoleUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    user = accounts.change_role(db, admin, user_id, body.role)
    return envelope(public_profile(user), f"User role changed to {body.role}")


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    deactivated = accounts.delete_user(db, admin, user_id)
    if deactivated is not None:
        return envelope(public_profile(deactivated), "User has orders and was deactivated instead of deleted")
    return envelope(message="User deleted successfully")


# ----------------------- Orders -----------------------

@router.get("/orders")
def list_orders(
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db=Depends(get_db),
):
    filter_q = {}
    if status:
        filter_q["status"] = status
    if payment_status:
        filter_q["payment_status"] = payment_status
    if search:
        filter_q["order_number"] = {"$regex": re.escape(search), "$options": "i"}
    result = orders.list_orders(db, filter_q, page, limit)
    items = [orders.order_view(o) for o in result.pop("items")]
    return envelope(items, count=len(items), **result)


@router.get("/orders/stats")
def order_stats(db=Depends(get_db)):
    return envelope(orders.order_overview(db))


@router.get("/orders/{order_id}")
def order_detail(order_id: str, db=Depends(get_db)):
    return envelope(orders.order_view(orders.get_order(db, order_id)))


@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusUpdate, admin: dict = Depends(require_admin),
                        db=Depends(get_db)):
    order = orders.update_status(db, order_id, body.status, admin, body.note)
    return envelope(orders.order_view(order), f"Order status updated to {order['status']}")


@router.patch("/orders/{order_id}/pay")
def mark_order_paid(order_id: str, body: Optional[PaymentUpdate] = None, admin: dict = Depends(require_admin),
                    db=Depends(get_db)):
    order = orders.mark_as_paid(db, order_id, admin, body.reference if body else None)
    return envelope(orders.order_view(order), "Order marked as paid")


@router.patch("/orders/{order_id}/tracking")
def add_tracking(order_id: str, body: TrackingUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    order = orders.add_tracking(db, order_id, body.carrier, body.tracking_number, admin)
    return envelope(orders.order_view(order), "Tracking information added")


# ----------------------- Inventory -----------------------

@router.get("/products/low-stock")
def low_stock(db=Depends(get_db)):
    items = serialize_doc(inventory.low_stock_products(db))
    return envelope(items, count=len(items))


# ----------------------- Reports -----------------------

@router.get("/reports/sales")
def sales_report(start: Optional[datetime] = None, end: Optional[datetime] = None, db=Depends(get_db)):
    return envelope(reports.sales_report(db, start, end))


@router.get("/reports/products")
def product_report(limit: int = Query(10, ge=1, le=100), db=Depends(get_db)):
    return envelope(reports.product_report(db, limit))


@router.get("/reports/customers")
def customer_report(
    limit: int = Query(10, ge=1, le=100),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db=Depends(get_db),
):
    return envelope(reports.customer_report(db, limit, start, end))


@router.get("/reports/revenue")
def revenue_report(
    period: Literal["day", "month"] = "day",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db=Depends(get_db),
):
    return envelope(reports.revenue_report(db, period, start, end))


# ----------------------- Payments -----------------------

@router.get("/payments/transactions")
def list_transactions(
    status: Optional[Literal["completed", "refunded"]] = None,
    method: Optional[PaymentMethod] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db=Depends(get_db),
):
    result = payments.list_transactions(db, status, method, page, limit)
    items = serialize_doc(result.pop("items"))
    return envelope(items, count=len(items), **result)


@router.get("/payments/stats")
def payment_stats(db=Depends(get_db)):
    return envelope(payments.payment_stats(db))


@router.get("/payments/transactions/{transaction_id}")
def transaction_detail(transaction_id: str, db=Depends(get_db)):
    return envelope(serialize_doc(payments.get_transaction(db, transaction_id)))


@router.post("/payments/transactions/{transaction_id}/refund")
def refund_transaction(transaction_id: str, body: Optional[RefundRequest] = None,
                       admin: dict = Depends(require_admin), db=Depends(get_db)):
    tx = payments.process_refund(db, transaction_id, admin, body.reason if body else None)
    return envelope(serialize_doc(tx), "Refund processed")


@router.get("/payments/revenue")
def payment_revenue(days: int = Query(30, ge=1, le=365), db=Depends(get_db)):
    return envelope(payments.revenue_by_day(db, days))
