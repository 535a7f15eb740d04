from fastapi import APIRouter, Depends

import accounts
from database import get_db
from errors import envelope
from security import get_current_user

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])


@router.get("")
def get_wishlist(current: dict = Depends(get_current_user), db=Depends(get_db)):
    items = accounts.wishlist_items(db, current)
    return envelope(items, count=len(items))


@router.post("/{product_id}", status_code=201)
def add_to_wishlist(product_id: str, current: dict = Depends(get_current_user), db=Depends(get_db)):
    accounts.add_to_wishlist(db, current, product_id)
    return envelope(message="Product added to wishlist")


@router.delete("/{product_id}")
def remove_from_wishlist(product_id: str, current: dict = Depends(get_current_user), db=Depends(get_db)):
    accounts.remove_from_wishlist(db, current, product_id)
    return envelope(message="Product removed from wishlist")


@router.delete("")
def clear_wishlist(current: dict = Depends(get_current_user), db=Depends(get_db)):
    accounts.clear_wishlist(db, current)
    return envelope(message="Wishlist cleared")
