"""Categories and products: slugs, sale pricing and the category tree."""
import re
from datetime import datetime
from typing import List, Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError
from slugify import slugify

from config import LOW_STOCK_THRESHOLD
from database import as_utc, create_document, parse_object_id, serialize_doc, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from inventory import DISCONTINUED, compute_stock_status, product_available
from logger import get_logger
from schemas import Category, Product

logger = get_logger("catalog")

PLACEHOLDER_IMAGE = "https://via.placeholder.com/600x400?text=Product"

PRODUCT_SORTS = {
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "rating_desc": [("rating", -1)],
    "newest": [("created_at", -1)],
}


def unique_slug(collection, name: str, exclude_id=None) -> str:
    base = slugify(name) or "item"
    slug, n = base, 2
    while True:
        query = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if not collection.find_one(query, {"_id": 1}):
            return slug
        slug = f"{base}-{n}"
        n += 1


# ----------------------- Pricing -----------------------

def is_on_sale(product: dict, now: Optional[datetime] = None) -> bool:
    if not product.get("on_sale"):
        return False
    now = now or utcnow()
    start = as_utc(product.get("sale_start_date"))
    end = as_utc(product.get("sale_end_date"))
    return (start is None or start <= now) and (end is None or end >= now)


def final_price(product: dict, now: Optional[datetime] = None) -> float:
    if is_on_sale(product, now) and product.get("sale_price"):
        return product["sale_price"]
    return product.get("price", 0)


def discount_percentage(product: dict) -> int:
    compare = product.get("compare_at_price")
    price = product.get("price", 0)
    if compare and compare > price:
        return round((compare - price) / compare * 100)
    return 0


def with_derived_fields(product: dict, now: Optional[datetime] = None) -> dict:
    data = serialize_doc(product)
    price = final_price(product, now)
    data["final_price"] = price
    data["is_on_sale"] = is_on_sale(product, now)
    data["discount_percentage"] = discount_percentage(product)
    data["discount_amount"] = round(product.get("price", 0) - price, 2) if product.get("price", 0) > price else 0
    data["available"] = product_available(product)
    data["in_stock"] = data["available"] > 0
    return data


# ----------------------- Products -----------------------

def get_product(db, product_id) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise NotFoundError("Product not found")
    return product


def product_filter(q=None, category=None, min_price=None, max_price=None, featured=None, in_stock=None,
                   include_inactive=False) -> dict:
    filter_q = {}
    if not include_inactive:
        filter_q["is_active"] = True
    if q:
        pattern = re.escape(q)
        filter_q["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"brand": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        filter_q["category"] = category
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
        filter_q["price"] = price_filter
    if featured is not None:
        filter_q["featured"] = featured
    if in_stock:
        filter_q["stock_status"] = {"$in": ["in-stock", "low-stock"]}
    return filter_q


def _check_category(db, category_id: str) -> None:
    if not db["category"].find_one({"_id": parse_object_id(category_id, "category")}, {"_id": 1}):
        raise ValidationError("Category does not exist")


def create_product(db, data: dict) -> dict:
    _check_category(db, data["category"])
    if db["product"].find_one({"sku": data["sku"]}, {"_id": 1}):
        raise ValidationError("SKU already exists")
    threshold = data.get("low_stock_threshold")
    if threshold is None:
        threshold = LOW_STOCK_THRESHOLD
    product = Product(
        **{k: v for k, v in data.items() if k != "low_stock_threshold"},
        slug=unique_slug(db["product"], data["name"]),
        low_stock_threshold=threshold,
        stock_status=compute_stock_status(data.get("stock", 0), 0, threshold),
    )
    if not product.images:
        product.images = [PLACEHOLDER_IMAGE]
    try:
        product_id = create_document(db, "product", product)
    except DuplicateKeyError:
        raise ConflictError("Product with this slug or SKU already exists")
    logger.info("Created product %s (%s)", product_id, product.sku)
    return get_product(db, product_id)


def update_product(db, product_id, changes: dict) -> dict:
    product = get_product(db, product_id)
    if "category" in changes:
        _check_category(db, changes["category"])
    if "name" in changes and changes["name"] != product.get("name"):
        changes["slug"] = unique_slug(db["product"], changes["name"], exclude_id=product["_id"])
    threshold = changes.get("low_stock_threshold", product.get("low_stock_threshold", LOW_STOCK_THRESHOLD))
    computed = compute_stock_status(product.get("stock", 0), product.get("reserved", 0), threshold)
    if "stock_status" in changes:
        # only discontinued can be set by hand, anything else follows stock
        if changes["stock_status"] != DISCONTINUED:
            changes["stock_status"] = computed
    elif "low_stock_threshold" in changes and product.get("stock_status") != DISCONTINUED:
        changes["stock_status"] = computed
    changes["updated_at"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    return get_product(db, product["_id"])


def delete_product(db, product_id) -> None:
    oid = parse_object_id(product_id, "product")
    res = db["product"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found")
    db["review"].delete_many({"product_id": str(oid)})
    logger.info("Deleted product %s", oid)


def apply_discount(db, product_id, percentage: float, start_date=None, end_date=None) -> dict:
    if percentage <= 0 or percentage >= 100:
        raise ValidationError("Discount percentage must be between 0 and 100")
    product = get_product(db, product_id)
    if start_date and end_date and as_utc(end_date) <= as_utc(start_date):
        raise ValidationError("Sale end date must be after the start date")
    sale_price = round(product["price"] * (1 - percentage / 100), 2)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {
            "sale_price": sale_price,
            "on_sale": True,
            "sale_start_date": start_date or utcnow(),
            "sale_end_date": end_date,
            "updated_at": utcnow(),
        }},
    )
    return get_product(db, product["_id"])


def remove_discount(db, product_id) -> dict:
    product = get_product(db, product_id)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"on_sale": False, "sale_price": None, "sale_start_date": None, "sale_end_date": None,
                  "updated_at": utcnow()}},
    )
    return get_product(db, product["_id"])


def on_sale_products(db, now: Optional[datetime] = None) -> List[dict]:
    now = now or utcnow()
    candidates = db["product"].find({"on_sale": True, "is_active": True, "sale_price": {"$ne": None}})
    products = [p for p in candidates if is_on_sale(p, now) and p["sale_price"] < p.get("price", 0)]
    products.sort(key=lambda p: (p["price"] - p["sale_price"]) / p["price"] if p.get("price") else 0, reverse=True)
    return products


def related_products(db, product: dict, limit: int = 8) -> List[dict]:
    return list(
        db["product"].find({"category": product["category"], "_id": {"$ne": product["_id"]}, "is_active": True})
        .sort([("rating", DESCENDING)])
        .limit(limit)
    )


def increment_views(db, product_id) -> dict:
    oid = parse_object_id(product_id, "product")
    res = db["product"].update_one({"_id": oid}, {"$inc": {"views": 1}})
    if res.matched_count == 0:
        raise NotFoundError("Product not found")
    return get_product(db, oid)


# ----------------------- Categories -----------------------

def get_category(db, category_id) -> dict:
    category = db["category"].find_one({"_id": parse_object_id(category_id, "category")})
    if not category:
        raise NotFoundError("Category not found")
    return category


def _parent_level(db, parent_id: Optional[str], self_id=None) -> int:
    if not parent_id:
        return 0
    parent = db["category"].find_one({"_id": parse_object_id(parent_id, "parent category")})
    if not parent:
        raise ValidationError("Parent category does not exist")
    if self_id is not None and _is_descendant_or_self(db, parent["_id"], self_id):
        raise ValidationError("A category cannot be moved under itself")
    return parent.get("level", 0) + 1


def _is_descendant_or_self(db, candidate_id, ancestor_id) -> bool:
    current = db["category"].find_one({"_id": candidate_id})
    while current is not None:
        if current["_id"] == ancestor_id:
            return True
        parent = current.get("parent_category")
        current = db["category"].find_one({"_id": parse_object_id(parent)}) if parent else None
    return False


def create_category(db, data: dict) -> dict:
    slug = slugify(data["name"])
    if db["category"].find_one({"slug": slug}, {"_id": 1}):
        raise ValidationError("Category already exists")
    level = _parent_level(db, data.get("parent_category"))
    category = Category(**data, slug=slug, level=level)
    try:
        category_id = create_document(db, "category", category)
    except DuplicateKeyError:
        raise ValidationError("Category already exists")
    return get_category(db, category_id)


def update_category(db, category_id, changes: dict) -> dict:
    category = get_category(db, category_id)
    if "name" in changes:
        slug = slugify(changes["name"])
        if db["category"].find_one({"slug": slug, "_id": {"$ne": category["_id"]}}, {"_id": 1}):
            raise ValidationError("Category already exists")
        changes["slug"] = slug
    if "parent_category" in changes:
        changes["level"] = _parent_level(db, changes["parent_category"], self_id=category["_id"])
    changes["updated_at"] = utcnow()
    db["category"].update_one({"_id": category["_id"]}, {"$set": changes})
    return get_category(db, category["_id"])


def delete_category(db, category_id) -> None:
    category = get_category(db, category_id)
    cid = str(category["_id"])
    if db["product"].count_documents({"category": cid}):
        raise ValidationError("Cannot delete a category that still has products")
    if db["category"].count_documents({"parent_category": cid}):
        raise ValidationError("Cannot delete a category that has subcategories")
    db["category"].delete_one({"_id": category["_id"]})


def category_tree(db) -> List[dict]:
    categories = list(db["category"].find({"is_active": True}).sort([("display_order", 1), ("name", 1)]))
    nodes = {str(c["_id"]): {**serialize_doc(c), "children": []} for c in categories}
    tree = []
    for c in categories:
        node = nodes[str(c["_id"])]
        parent = c.get("parent_category")
        if parent and parent in nodes:
            nodes[parent]["children"].append(node)
        elif not parent:
            tree.append(node)
    return tree
