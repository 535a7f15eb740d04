"""User accounts: registration, profile, saved addresses, wishlist and admin user management."""
from typing import Optional

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from carts import clear_cart, find_cart
from database import create_document, paginate, parse_object_id, serialize_doc, utcnow
from errors import AuthenticationError, NotFoundError, ValidationError
from inventory import product_available
from logger import get_logger
from schemas import Address, User
from security import get_password_hash, verify_password

logger = get_logger("accounts")

PROFILE_FIELDS = ("first_name", "last_name", "phone", "date_of_birth", "preferences")
RESTRICTED_FIELDS = ("email", "password", "password_hash", "role", "is_active", "wishlist", "addresses")


def get_user(db, user_id) -> dict:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "user")})
    if not user:
        raise NotFoundError("User not found")
    return user


def register_user(db, data: dict) -> dict:
    email = data["email"].lower()
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise ValidationError("Email already registered")
    user = User(
        first_name=data["first_name"].strip(),
        last_name=data["last_name"].strip(),
        email=email,
        password_hash=get_password_hash(data["password"]),
        phone=data.get("phone"),
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    logger.info("Registered user %s", user_id)
    return get_user(db, user_id)


def authenticate(db, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise AuthenticationError("Invalid email or password")
    if not user.get("is_active", True):
        raise AuthenticationError("Account has been deactivated")
    now = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    return user


def update_profile(db, user: dict, changes: dict) -> dict:
    for key in RESTRICTED_FIELDS:
        if key in changes:
            raise ValidationError(f"Cannot update restricted field: {key}")
    updates = {k: v for k, v in changes.items() if k in PROFILE_FIELDS and v is not None}
    if updates:
        updates["updated_at"] = utcnow()
        db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    return get_user(db, user["_id"])


def change_password(db, user: dict, current_password: str, new_password: str) -> dict:
    if not verify_password(current_password, user.get("password_hash", "")):
        raise AuthenticationError("Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": get_password_hash(new_password), "updated_at": utcnow()}},
    )
    return get_user(db, user["_id"])


# ----------------------- Addresses -----------------------

def default_address(user: dict) -> Optional[dict]:
    addresses = user.get("addresses") or []
    if not addresses:
        return None
    return next((a for a in addresses if a.get("is_default")), addresses[0])


def _find_address(user: dict, address_id) -> dict:
    oid = parse_object_id(address_id, "address")
    for address in user.get("addresses", []):
        if address["_id"] == oid:
            return address
    raise NotFoundError("Address not found")


def _save_addresses(db, user: dict, addresses: list) -> None:
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})


def add_address(db, user: dict, data: dict) -> dict:
    address = Address(**data).model_dump()
    address["_id"] = ObjectId()
    addresses = [dict(a) for a in user.get("addresses", [])]
    if address["is_default"] or not addresses:
        for a in addresses:
            a["is_default"] = False
        address["is_default"] = True
    addresses.append(address)
    _save_addresses(db, user, addresses)
    return address


def update_address(db, user: dict, address_id, changes: dict) -> dict:
    target = _find_address(user, address_id)
    addresses = []
    for a in user["addresses"]:
        a = dict(a)
        if changes.get("is_default") is True:
            a["is_default"] = False
        if a["_id"] == target["_id"]:
            a.update({k: v for k, v in changes.items() if v is not None})
            target = a
        addresses.append(a)
    if not any(a.get("is_default") for a in addresses):
        addresses[0]["is_default"] = True
        if addresses[0]["_id"] == target["_id"]:
            target = addresses[0]
    _save_addresses(db, user, addresses)
    return target


def delete_address(db, user: dict, address_id) -> None:
    addresses = user.get("addresses", [])
    if not addresses:
        raise ValidationError("No addresses to delete")
    target = _find_address(user, address_id)
    if len(addresses) == 1:
        raise ValidationError("Cannot delete the only address")
    remaining = [dict(a) for a in addresses if a["_id"] != target["_id"]]
    if target.get("is_default"):
        remaining[0]["is_default"] = True
    _save_addresses(db, user, remaining)


def set_default_address(db, user: dict, address_id) -> dict:
    target = _find_address(user, address_id)
    addresses = [dict(a, is_default=a["_id"] == target["_id"]) for a in user["addresses"]]
    _save_addresses(db, user, addresses)
    return dict(target, is_default=True)


# ----------------------- Wishlist -----------------------

def wishlist_items(db, user: dict) -> list:
    ids = [parse_object_id(pid) for pid in user.get("wishlist", [])]
    if not ids:
        return []
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}
    categories = {
        str(c["_id"]): c for c in db["category"].find(
            {"_id": {"$in": [parse_object_id(p["category"]) for p in products.values() if p.get("category")]}},
            {"name": 1, "slug": 1},
        )
    }
    items = []
    for pid in user.get("wishlist", []):
        product = products.get(pid)
        if product is None:
            continue
        category = categories.get(product.get("category"))
        items.append({
            "id": pid,
            "name": product.get("name"),
            "price": product.get("price"),
            "images": product.get("images", []),
            "rating": product.get("rating", 0),
            "category": {"name": category["name"], "slug": category.get("slug")} if category else None,
            "in_stock": product_available(product) > 0,
        })
    return items


def add_to_wishlist(db, user: dict, product_id: str) -> None:
    oid = parse_object_id(product_id, "product")
    if not db["product"].find_one({"_id": oid}, {"_id": 1}):
        raise NotFoundError("Product not found")
    res = db["user"].update_one({"_id": user["_id"], "wishlist": {"$ne": str(oid)}},
                                {"$push": {"wishlist": str(oid)}})
    if res.matched_count == 0:
        raise ValidationError("Product already in wishlist")


def remove_from_wishlist(db, user: dict, product_id: str) -> None:
    res = db["user"].update_one({"_id": user["_id"], "wishlist": product_id}, {"$pull": {"wishlist": product_id}})
    if res.matched_count == 0:
        raise NotFoundError("Product not found in wishlist")


def clear_wishlist(db, user: dict) -> None:
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"wishlist": []}})


# ----------------------- Admin -----------------------

def list_users(db, role: Optional[str] = None, is_active: Optional[bool] = None, search: Optional[str] = None,
               page: int = 1, limit: int = 20) -> dict:
    filter_q = {}
    if role:
        filter_q["role"] = role
    if is_active is not None:
        filter_q["is_active"] = is_active
    if search:
        regex = {"$regex": search, "$options": "i"}
        filter_q["$or"] = [{"first_name": regex}, {"last_name": regex}, {"email": regex}]
    return paginate(db["user"], filter_q, page, limit, sort=[("created_at", DESCENDING)],
                    projection={"password_hash": 0})


def user_stats(db) -> dict:
    now = utcnow()
    start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start_of_month = start_of_today.replace(day=1)
    return {
        "total_users": db["user"].count_documents({}),
        "active_users": db["user"].count_documents({"is_active": True}),
        "customers_count": db["user"].count_documents({"role": "customer"}),
        "admins_count": db["user"].count_documents({"role": "admin"}),
        "new_users_this_month": db["user"].count_documents({"created_at": {"$gte": start_of_month}}),
        "new_users_today": db["user"].count_documents({"created_at": {"$gte": start_of_today}}),
    }


def user_detail(db, user_id) -> dict:
    user = get_user(db, user_id)
    data = serialize_doc({k: v for k, v in user.items() if k != "password_hash"})
    data["wishlist_count"] = len(user.get("wishlist", []))
    data["address_count"] = len(user.get("addresses", []))
    data["order_count"] = db["order"].count_documents({"user_id": str(user["_id"])})
    return data


def set_active(db, user_id, active: bool) -> dict:
    user = get_user(db, user_id)
    if user.get("is_active", True) == active:
        raise ValidationError("User is already active" if active else "User is already deactivated")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_active": active, "updated_at": utcnow()}})
    logger.info("User %s %s", user["_id"], "activated" if active else "deactivated")
    return get_user(db, user["_id"])


def change_role(db, admin: dict, user_id, role: str) -> dict:
    user = get_user(db, user_id)
    if user["_id"] == admin["_id"]:
        raise ValidationError("Cannot change your own role")
    if user.get("role") == role:
        raise ValidationError(f"User is already assigned the '{role}' role")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": role, "updated_at": utcnow()}})
    return get_user(db, user["_id"])


def delete_user(db, admin: dict, user_id) -> Optional[dict]:
    """Delete a user; users with orders are deactivated instead and returned."""
    user = get_user(db, user_id)
    if user["_id"] == admin["_id"]:
        raise ValidationError("Cannot delete your own account")
    order_count = db["order"].count_documents({"user_id": str(user["_id"])})
    if order_count:
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
        return get_user(db, user["_id"])
    cart = find_cart(db, user_id=user["_id"])
    if cart:
        clear_cart(db, cart)
        db["cart"].delete_one({"_id": cart["_id"]})
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("Deleted user %s", user["_id"])
    return None
