from typing import Optional

from fastapi import APIRouter, Depends, Query

import orders
from database import get_db
from errors import envelope
from schemas import CancelRequest, CheckoutRequest, OrderStatus, PaymentStatus
from security import get_current_user

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", status_code=201)
def create_order(body: CheckoutRequest, current: dict = Depends(get_current_user), db=Depends(get_db)):
    address = orders.resolve_shipping_address(
        current,
        body.shipping_address.model_dump() if body.shipping_address else None,
        body.address_id,
    )
    order = orders.create_order_from_cart(db, current, address, body.payment_method, body.customer_note)
    return envelope(orders.order_view(order), "Order placed successfully")


@router.get("")
def list_my_orders(
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    filter_q = {"user_id": str(current["_id"])}
    if status:
        filter_q["status"] = status
    if payment_status:
        filter_q["payment_status"] = payment_status
    result = orders.list_orders(db, filter_q, page, limit)
    items = [orders.order_view(o) for o in result.pop("items")]
    return envelope(items, count=len(items), **result)


@router.get("/stats")
def my_order_stats(current: dict = Depends(get_current_user), db=Depends(get_db)):
    return envelope(orders.user_order_stats(db, str(current["_id"])))


@router.get("/{order_id}")
def get_order(order_id: str, current: dict = Depends(get_current_user), db=Depends(get_db)):
    return envelope(orders.order_view(orders.get_order_for(db, order_id, current)))


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, body: Optional[CancelRequest] = None, current: dict = Depends(get_current_user),
                 db=Depends(get_db)):
    order = orders.cancel_order(db, order_id, current, body.reason if body else None)
    return envelope(orders.order_view(order), "Order cancelled successfully")
