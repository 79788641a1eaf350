import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from database import parse_timestamp

DEFAULT_PAGE_SIZE = 12

Product = Dict[str, Any]


class ProductQuery(BaseModel):
    search: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    minPrice: Optional[float] = None
    maxPrice: Optional[float] = None
    featured: Optional[bool] = None
    sort: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(DEFAULT_PAGE_SIZE, ge=1)


def _lower(value: Any) -> str:
    return str(value or "").lower()


# sort key -> (key function, reverse)
SORT_MAP: Dict[str, Tuple[Callable[[Product], Any], bool]] = {
    "price-asc": (lambda p: p.get("price", 0), False),
    "price-desc": (lambda p: p.get("price", 0), True),
    "name-asc": (lambda p: _lower(p.get("name")), False),
    "name-desc": (lambda p: _lower(p.get("name")), True),
    "rating": (lambda p: p.get("rating", 0), True),
    "newest": (lambda p: parse_timestamp(p.get("createdAt")), True),
}


def matches(product: Product, query: ProductQuery) -> bool:
    if query.search:
        needle = query.search.lower()
        haystack = [_lower(product.get("name")), _lower(product.get("description"))]
        haystack.extend(_lower(t) for t in product.get("tags") or [])
        if not any(needle in text for text in haystack):
            return False
    if query.category and _lower(product.get("category")) != query.category.lower():
        return False
    if query.subcategory and _lower(product.get("subcategory")) != query.subcategory.lower():
        return False
    if query.brand and _lower(product.get("brand")) != query.brand.lower():
        return False
    price = product.get("price", 0)
    if query.minPrice is not None and price < query.minPrice:
        return False
    if query.maxPrice is not None and price > query.maxPrice:
        return False
    if query.featured and not product.get("featured"):
        return False
    return True


def sort_products(products: List[Product], sort: Optional[str]) -> List[Product]:
    if not sort or sort not in SORT_MAP:
        return list(products)
    key, reverse = SORT_MAP[sort]
    return sorted(products, key=key, reverse=reverse)


def paginate(products: List[Product], page: int, page_size: int) -> Dict[str, Any]:
    total = len(products)
    start = (page - 1) * page_size
    return {
        "products": products[start:start + page_size],
        "pagination": {
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": math.ceil(total / page_size),
        },
    }


def search(products: List[Product], query: ProductQuery) -> Dict[str, Any]:
    found = [p for p in products if matches(p, query)]
    found = sort_products(found, query.sort)
    return paginate(found, query.page, query.limit)


def _distinct(products: List[Product], field: str) -> List[Any]:
    seen: List[Any] = []
    for p in products:
        value = p.get(field)
        if value not in seen:
            seen.append(value)
    return seen


def facets(products: List[Product]) -> Dict[str, List[Any]]:
    return {
        "categories": _distinct(products, "category"),
        "subcategories": _distinct(products, "subcategory"),
        "brands": _distinct(products, "brand"),
    }


def related(products: List[Product], product: Product, limit: int = 4) -> List[Product]:
    return [
        p for p in products
        if p.get("category") == product.get("category") and p.get("id") != product.get("id")
    ][:limit]
