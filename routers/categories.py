from fastapi import APIRouter, Depends, Query

import catalog
from database import get_db, paginate, serialize_doc
from errors import NotFoundError, envelope
from schemas import CategoryCreate, CategoryUpdate
from security import require_admin

router = APIRouter(prefix="/api/categories", tags=["categories"])


def _with_count(db, category: dict) -> dict:
    data = serialize_doc(category)
    data["product_count"] = db["product"].count_documents({"category": str(category["_id"])})
    return data


@router.get("")
def list_categories(include_inactive: bool = False, db=Depends(get_db)):
    filter_q = {} if include_inactive else {"is_active": True}
    cats = db["category"].find(filter_q).sort([("level", 1), ("display_order", 1), ("name", 1)])
    items = [_with_count(db, c) for c in cats]
    return envelope(items, count=len(items))


@router.get("/tree")
def get_tree(db=Depends(get_db)):
    return envelope(catalog.category_tree(db))


@router.get("/slug/{slug}")
def get_category_by_slug(slug: str, db=Depends(get_db)):
    category = db["category"].find_one({"slug": slug.lower()})
    if not category:
        raise NotFoundError("Category not found")
    return envelope(_with_count(db, category))


@router.get("/{category_id}")
def get_category(category_id: str, db=Depends(get_db)):
    return envelope(_with_count(db, catalog.get_category(db, category_id)))


@router.get("/{category_id}/subcategories")
def get_subcategories(category_id: str, db=Depends(get_db)):
    category = catalog.get_category(db, category_id)
    subs = db["category"].find({"parent_category": str(category["_id"])}).sort([("display_order", 1), ("name", 1)])
    return envelope([serialize_doc(s) for s in subs])


@router.get("/{category_id}/products")
def get_category_products(
    category_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db=Depends(get_db),
):
    category = catalog.get_category(db, category_id)
    result = paginate(db["product"], {"category": str(category["_id"]), "is_active": True}, page, limit,
                      sort=[("created_at", -1)])
    items = [catalog.with_derived_fields(p) for p in result.pop("items")]
    return envelope(items, category=serialize_doc(category), **result)


@router.post("", status_code=201)
def create_category(body: CategoryCreate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return envelope(serialize_doc(catalog.create_category(db, body.model_dump())), "Category created")


@router.put("/{category_id}")
def update_category(category_id: str, body: CategoryUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    category = catalog.update_category(db, category_id, body.model_dump(exclude_unset=True))
    return envelope(serialize_doc(category), "Category updated")


@router.delete("/{category_id}")
def delete_category(category_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    catalog.delete_category(db, category_id)
    return envelope(message="Category deleted successfully")
