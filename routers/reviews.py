from typing import Optional

from fastapi import APIRouter, Depends, Query

import reviews
from database import get_db, serialize_doc
from errors import envelope
from schemas import ReviewCreate, ReviewUpdate
from security import get_current_user, get_optional_user

router = APIRouter(tags=["reviews"])


@router.post("/api/products/{product_id}/reviews", status_code=201)
def add_review(product_id: str, body: ReviewCreate, user: Optional[dict] = Depends(get_optional_user),
               db=Depends(get_db)):
    data = body.model_dump()
    review = reviews.create_review(db, product_id, data, user)
    return envelope(serialize_doc(review), "Review added successfully")


@router.get("/api/products/{product_id}/reviews")
def list_reviews(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: str = Query("recent", description="recent|helpful|rating"),
    db=Depends(get_db),
):
    result = reviews.list_reviews(db, product_id, page, limit, sort)
    items = serialize_doc(result.pop("items"))
    return envelope(items, count=len(items), **result)


@router.get("/api/reviews/{review_id}")
def get_review(review_id: str, db=Depends(get_db)):
    return envelope(serialize_doc(reviews.get_review(db, review_id)))


@router.put("/api/reviews/{review_id}")
def update_review(review_id: str, body: ReviewUpdate, current: dict = Depends(get_current_user),
                  db=Depends(get_db)):
    reviews.ensure_can_modify(reviews.get_review(db, review_id), current)
    review = reviews.update_review(db, review_id, body.model_dump(exclude_unset=True, exclude_none=True))
    return envelope(serialize_doc(review), "Review updated")


@router.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, current: dict = Depends(get_current_user), db=Depends(get_db)):
    reviews.ensure_can_modify(reviews.get_review(db, review_id), current)
    reviews.delete_review(db, review_id)
    return envelope(message="Review deleted successfully")


@router.patch("/api/reviews/{review_id}/helpful")
def mark_helpful(review_id: str, db=Depends(get_db)):
    return envelope(serialize_doc(reviews.mark_helpful(db, review_id)), "Marked as helpful")
