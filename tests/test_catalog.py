import catalog
from conftest import make_product


def test_slug_transliterates_accents(db, category):
    product = make_product(db, category, name="Thẻ Tín Dụng Đen", sku="VN-1")
    assert product["slug"] == "the-tin-dung-den"


def test_slug_collisions_get_a_suffix(db, category):
    first = make_product(db, category, name="Café Card", sku="C-1")
    second = make_product(db, category, name="Cafe Card", sku="C-2")
    assert first["slug"] == "cafe-card"
    assert second["slug"] == "cafe-card-2"


def test_category_slug(db):
    created = catalog.create_category(db, {"name": "Thẻ Quà Tặng"})
    assert created["slug"] == "the-qua-tang"
