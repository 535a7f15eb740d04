from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm

import accounts
from carts import merge_guest_cart
from database import get_db
from errors import envelope
from schemas import ChangePasswordRequest, ProfileUpdate, RegisterRequest
from security import create_access_token, get_current_user, public_profile

router = APIRouter(prefix="/api/auth", tags=["auth"])

GUEST_CART_KEY = "cart_id"


@router.post("/register", status_code=201)
def register(body: RegisterRequest, db=Depends(get_db)):
    user = accounts.register_user(db, body.model_dump())
    return envelope(
        {"user": public_profile(user), "access_token": create_access_token(user), "token_type": "bearer"},
        "Registration successful",
    )


@router.post("/login")
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    user = accounts.authenticate(db, form_data.username, form_data.password)
    guest_cart = request.session.pop(GUEST_CART_KEY, None)
    if guest_cart:
        merge_guest_cart(db, guest_cart, str(user["_id"]))
    # access_token/token_type at the top level keep the OAuth2 password flow working
    return envelope(
        {"user": public_profile(user)},
        "Login successful",
        access_token=create_access_token(user),
        token_type="bearer",
    )


@router.get("/me")
def me(current: dict = Depends(get_current_user)):
    return envelope(public_profile(current))


@router.put("/update-profile")
def update_profile(body: ProfileUpdate, current: dict = Depends(get_current_user), db=Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    changes.update(body.model_extra or {})
    user = accounts.update_profile(db, current, changes)
    return envelope(public_profile(user), "Profile updated successfully")


@router.post("/change-password")
def change_password(body: ChangePasswordRequest, current: dict = Depends(get_current_user), db=Depends(get_db)):
    user = accounts.change_password(db, current, body.current_password, body.new_password)
    return envelope({"access_token": create_access_token(user), "token_type": "bearer"}, "Password changed successfully")


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return envelope(message="Logged out successfully")
