"""
Product reviews.

A reviewer (identified by email) may review a product once. After every
write the product's `rating` and `num_reviews` are recomputed from all of
its reviews rather than adjusted incrementally.
"""
from typing import Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from catalog import get_product
from database import create_document, paginate, parse_object_id, utcnow
from errors import AuthenticationError, NotFoundError, PermissionDenied, ValidationError
from logger import get_logger
from schemas import Review, Reviewer

logger = get_logger("reviews")

REVIEW_SORTS = {
    "recent": [("created_at", DESCENDING)],
    "helpful": [("helpful", DESCENDING), ("created_at", DESCENDING)],
    "rating": [("rating", DESCENDING), ("created_at", DESCENDING)],
}


def recompute_product_rating(db, product_id: str) -> dict:
    reviews = list(db["review"].find({"product_id": product_id}, {"rating": 1}))
    if reviews:
        rating = round(sum(r.get("rating", 0) for r in reviews) / len(reviews), 1)
    else:
        rating = 0
    stats = {"rating": rating, "num_reviews": len(reviews)}
    db["product"].update_one({"_id": parse_object_id(product_id, "product")}, {"$set": stats})
    return stats


def is_verified_purchase(db, email: str, product_id: str) -> bool:
    user = db["user"].find_one({"email": email}, {"_id": 1})
    if not user:
        return False
    return db["order"].count_documents({
        "user_id": str(user["_id"]),
        "status": "delivered",
        "items.product_id": product_id,
    }) > 0


def create_review(db, product_id: str, data: dict, user: Optional[dict] = None) -> dict:
    product = get_product(db, product_id)
    pid = str(product["_id"])
    reviewer = data.get("user")
    if user is not None:
        reviewer = {"name": f"{user.get('first_name', '')} {user.get('last_name', '')}".strip(), "email": user["email"]}
    if not reviewer:
        raise ValidationError("Reviewer name and email are required")
    reviewer = Reviewer(**reviewer)
    if user is None and db["user"].find_one({"email": reviewer.email}, {"_id": 1}):
        raise AuthenticationError("An account exists for this email, please login to review")
    if db["review"].find_one({"product_id": pid, "user.email": reviewer.email}, {"_id": 1}):
        raise ValidationError("You have already reviewed this product")
    review = Review(
        product_id=pid,
        user=reviewer,
        rating=data["rating"],
        title=data["title"],
        comment=data["comment"],
        images=data.get("images") or [],
        verified=user is not None and is_verified_purchase(db, reviewer.email, pid),
    )
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise ValidationError("You have already reviewed this product")
    recompute_product_rating(db, pid)
    logger.info("Review %s added to product %s", review_id, pid)
    return get_review(db, review_id)


def get_review(db, review_id) -> dict:
    review = db["review"].find_one({"_id": parse_object_id(review_id, "review")})
    if not review:
        raise NotFoundError("Review not found")
    return review


def list_reviews(db, product_id: str, page: int = 1, limit: int = 10, sort: str = "recent") -> dict:
    product = get_product(db, product_id)
    return paginate(
        db["review"], {"product_id": str(product["_id"])}, page, limit,
        sort=REVIEW_SORTS.get(sort, REVIEW_SORTS["recent"]),
    )


def update_review(db, review_id, changes: dict) -> dict:
    review = get_review(db, review_id)
    if changes:
        changes["updated_at"] = utcnow()
        db["review"].update_one({"_id": review["_id"]}, {"$set": changes})
        recompute_product_rating(db, review["product_id"])
    return get_review(db, review["_id"])


def delete_review(db, review_id) -> None:
    review = db["review"].find_one_and_delete({"_id": parse_object_id(review_id, "review")})
    if not review:
        raise NotFoundError("Review not found")
    recompute_product_rating(db, review["product_id"])


def mark_helpful(db, review_id) -> dict:
    oid = parse_object_id(review_id, "review")
    res = db["review"].update_one({"_id": oid}, {"$inc": {"helpful": 1}})
    if res.matched_count == 0:
        raise NotFoundError("Review not found")
    return get_review(db, oid)


def ensure_can_modify(review: dict, user: dict) -> None:
    if user.get("role") == "admin":
        return
    if review.get("user", {}).get("email") != user.get("email", "").lower():
        raise PermissionDenied("Not authorized to modify this review")
