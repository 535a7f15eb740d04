import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request

import carts
from database import get_db
from errors import AuthenticationError, NotFoundError, envelope
from routers.auth import GUEST_CART_KEY
from schemas import CartItemAdd, CartItemUpdate, QuantityRequest
from security import get_optional_user

router = APIRouter(prefix="/api/cart", tags=["cart"])


def _owner(request: Request, user: Optional[dict], create: bool = True) -> dict:
    """Signed-in users own their cart; guests get one keyed by their session."""
    if user is not None:
        return {"user_id": str(user["_id"])}
    session_id = request.session.get(GUEST_CART_KEY)
    if not session_id and create:
        session_id = uuid.uuid4().hex
        request.session[GUEST_CART_KEY] = session_id
    return {"session_id": session_id}


def _cart(request: Request, user: Optional[dict], db) -> dict:
    return carts.get_or_create_cart(db, **_owner(request, user))


def _require_user(user: Optional[dict], message: str = "Login required") -> dict:
    if user is None:
        raise AuthenticationError(message)
    return user


@router.get("")
def get_cart(request: Request, user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    return envelope(carts.cart_view(db, _cart(request, user, db)))


@router.post("/items", status_code=201)
def add_item(body: CartItemAdd, request: Request, user: Optional[dict] = Depends(get_optional_user),
             db=Depends(get_db)):
    cart = carts.add_item(db, _cart(request, user, db), body.product_id, body.quantity)
    return envelope(carts.cart_view(db, cart), "Item added to cart")


@router.put("/items/{item_id}")
def update_item(item_id: str, body: CartItemUpdate, request: Request,
                user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    cart = carts.update_item_quantity(db, _cart(request, user, db), item_id, body.quantity)
    return envelope(carts.cart_view(db, cart), "Item quantity updated")


@router.delete("/items/{item_id}")
def remove_item(item_id: str, request: Request, user: Optional[dict] = Depends(get_optional_user),
                db=Depends(get_db)):
    cart = carts.remove_item(db, _cart(request, user, db), item_id)
    return envelope(carts.cart_view(db, cart), "Item removed from cart")


@router.delete("")
def clear_cart(request: Request, user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    cart = carts.clear_cart(db, _cart(request, user, db))
    return envelope(carts.cart_view(db, cart), "Cart cleared")


@router.post("/merge")
def merge_cart(request: Request, user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    user = _require_user(user, "User not authenticated")
    session_id = request.session.pop(GUEST_CART_KEY, None)
    if not session_id:
        cart = carts.get_or_create_cart(db, user_id=str(user["_id"]))
        return envelope(carts.cart_view(db, cart), "Using user cart")
    cart = carts.merge_guest_cart(db, session_id, str(user["_id"]))
    return envelope(carts.cart_view(db, cart), "Carts merged successfully")


@router.get("/summary")
def cart_summary(request: Request, user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    owner = _owner(request, user, create=False)
    cart = carts.find_cart(db, **owner) if any(owner.values()) else None
    if cart is None:
        return envelope({"item_count": 0, "subtotal": 0, "total": 0})
    totals = carts.cart_view(db, cart)["totals"]
    return envelope({"item_count": carts.item_count(cart), "subtotal": totals["subtotal"], "total": totals["total"]})


@router.post("/validate")
def validate_cart(request: Request, user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    cart = _cart(request, user, db)
    return envelope(carts.validate_cart(db, cart), cart=carts.cart_view(db, cart))


@router.get("/check/{product_id}")
def check_product(product_id: str, request: Request, user: Optional[dict] = Depends(get_optional_user),
                  db=Depends(get_db)):
    owner = _owner(request, user, create=False)
    cart = carts.find_cart(db, **owner) if any(owner.values()) else None
    return envelope(carts.check_product(cart, product_id))


@router.post("/recover")
def recover_cart(user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    user = _require_user(user, "Login required to recover cart")
    cart = carts.find_cart(db, user_id=str(user["_id"]))
    if cart is None:
        raise NotFoundError("No cart found")
    return envelope(carts.cart_view(db, cart), "Cart recovered", validation=carts.validate_cart(db, cart))


@router.post("/save-for-later/{item_id}")
def save_for_later(item_id: str, user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    user = _require_user(user)
    result = carts.save_for_later(db, user, item_id)
    return envelope(
        {"cart": carts.cart_view(db, result["cart"]), "wishlist_count": result["wishlist_count"]},
        "Item saved for later",
    )


@router.post("/move-to-cart/{product_id}")
def move_to_cart(product_id: str, body: Optional[QuantityRequest] = None,
                 user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    user = _require_user(user)
    cart = carts.move_to_cart(db, user, product_id, body.quantity if body else 1)
    return envelope(carts.cart_view(db, cart), "Item moved to cart")
