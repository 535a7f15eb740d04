from typing import Optional

from fastapi import APIRouter, Depends, Query

import catalog
import inventory
from database import get_db, paginate
from errors import NotFoundError, envelope
from schemas import DiscountRequest, ProductCreate, ProductUpdate, QuantityRequest, StockUpdate
from security import require_admin

router = APIRouter(prefix="/api/products", tags=["products"])
search_router = APIRouter(tags=["products"])


@router.get("")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    featured: Optional[bool] = None,
    in_stock: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort: Optional[str] = Query(None, description="price_asc|price_desc|rating_desc|newest"),
    db=Depends(get_db),
):
    filter_q = catalog.product_filter(q, category, min_price, max_price, featured, in_stock)
    result = paginate(db["product"], filter_q, page, limit, sort=catalog.PRODUCT_SORTS.get(sort))
    items = [catalog.with_derived_fields(p) for p in result.pop("items")]
    return envelope(items, count=len(items), **result)


@router.get("/on-sale")
def on_sale(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), db=Depends(get_db)):
    products = catalog.on_sale_products(db)
    start = (page - 1) * limit
    items = [catalog.with_derived_fields(p) for p in products[start:start + limit]]
    return envelope(items, page=page, total=len(products))


@router.get("/slug/{slug}")
def get_product_by_slug(slug: str, db=Depends(get_db)):
    product = db["product"].find_one({"slug": slug.lower(), "is_active": True})
    if not product:
        raise NotFoundError("Product not found")
    related = [catalog.with_derived_fields(r) for r in catalog.related_products(db, product)]
    return envelope({"product": catalog.with_derived_fields(product), "related": related})


@router.get("/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return envelope(catalog.with_derived_fields(catalog.get_product(db, product_id)))


@router.post("", status_code=201)
def create_product(body: ProductCreate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    product = catalog.create_product(db, body.model_dump())
    return envelope(catalog.with_derived_fields(product), "Product created")


@router.put("/{product_id}")
def update_product(product_id: str, body: ProductUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    product = catalog.update_product(db, product_id, body.model_dump(exclude_unset=True))
    return envelope(catalog.with_derived_fields(product), "Product updated")


@router.delete("/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    catalog.delete_product(db, product_id)
    return envelope(message="Product deleted successfully")


@router.get("/{product_id}/stock")
def get_stock(product_id: str, db=Depends(get_db)):
    return envelope(inventory.stock_snapshot(catalog.get_product(db, product_id)))


@router.post("/{product_id}/check-stock")
def check_stock(product_id: str, body: QuantityRequest, db=Depends(get_db)):
    product = catalog.get_product(db, product_id)
    available = inventory.product_available(product)
    fulfillable = inventory.can_fulfill(product, body.quantity)
    return envelope({
        "requested": body.quantity,
        "available": available,
        "can_fulfill": fulfillable,
        "message": f"{body.quantity} items available" if fulfillable else f"Only {available} items available",
    })


@router.patch("/{product_id}/stock")
def update_stock(product_id: str, body: StockUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    product = inventory.adjust_stock(db, product_id, body.quantity, body.operation)
    return envelope(catalog.with_derived_fields(product), "Stock updated")


@router.patch("/{product_id}/views")
def increment_views(product_id: str, db=Depends(get_db)):
    return envelope(catalog.with_derived_fields(catalog.increment_views(db, product_id)))


@router.post("/{product_id}/discount")
def apply_discount(product_id: str, body: DiscountRequest, admin: dict = Depends(require_admin), db=Depends(get_db)):
    product = catalog.apply_discount(db, product_id, body.percentage, body.start_date, body.end_date)
    return envelope(catalog.with_derived_fields(product), "Discount applied")


@router.delete("/{product_id}/discount")
def remove_discount(product_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return envelope(catalog.with_derived_fields(catalog.remove_discount(db, product_id)), "Discount removed")


# Search suggestions
@search_router.get("/api/search")
def search_suggestions(q: str = Query(..., min_length=1), db=Depends(get_db)):
    filter_q = catalog.product_filter(q=q)
    cursor = db["product"].find(filter_q, {"name": 1, "slug": 1}).limit(8)
    return envelope([{"id": str(d["_id"]), "name": d.get("name"), "slug": d.get("slug")} for d in cursor])
