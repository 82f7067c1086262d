import math
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.orm import Session, joinedload

from .errors import NotFound
from .models import Category, Product

DEFAULT_LIMIT = 9
MAX_LIMIT = 24
# keeps (page - 1) * limit inside the 32-bit range OFFSET accepts everywhere
MAX_PAGE = (2**31 - 1) // MAX_LIMIT


@dataclass(frozen=True)
class ProductFilter:
    """
    Catalog search criteria.

    ``text`` matches a case-insensitive substring of name or description;
    ``category`` matches the category slug or name case-insensitively.
    When both are set a product must satisfy both.
    """

    text: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_params(cls, q: Optional[str], category: Optional[str]) -> "ProductFilter":
        return cls(text=(q or "").strip() or None, category=(category or "").strip() or None)


@dataclass
class ProductPage:
    items: List[Product]
    page: int
    limit: int
    total: int
    page_count: int


def clamp_page(page: Optional[int]) -> int:
    return min(MAX_PAGE, max(1, page or 1))


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return min(MAX_LIMIT, max(1, limit))


def page_count(total: int, limit: int) -> int:
    return max(1, math.ceil(total / limit))


def filter_clauses(flt: ProductFilter) -> list:
    clauses = []
    if flt.text:
        needle = flt.text.lower()
        clauses.append(
            or_(
                func.lower(Product.name).contains(needle, autoescape=True),
                func.lower(Product.description).contains(needle, autoescape=True),
            )
        )
    if flt.category:
        wanted = flt.category.lower()
        clauses.append(or_(func.lower(Category.slug) == wanted, func.lower(Category.name) == wanted))
    return clauses


def build_product_query(flt: ProductFilter) -> Select:
    stmt = select(Product).join(Product.category)
    clauses = filter_clauses(flt)
    if clauses:
        stmt = stmt.where(and_(*clauses))
    return stmt


def list_products(
    session: Session, flt: ProductFilter, page: Optional[int] = 1, limit: Optional[int] = DEFAULT_LIMIT
) -> ProductPage:
    page = clamp_page(page)
    limit = clamp_limit(limit)
    stmt = build_product_query(flt)

    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        session.execute(
            stmt.options(joinedload(Product.category))
            .order_by(Product.created_at.desc(), Product.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return ProductPage(items=list(rows), page=page, limit=limit, total=total, page_count=page_count(total, limit))


def get_product_by_slug(session: Session, slug: str) -> Product:
    product = session.execute(
        select(Product).options(joinedload(Product.category)).where(Product.slug == slug)
    ).scalar_one_or_none()
    if product is None:
        raise NotFound("Not found")
    return product


def list_categories(session: Session) -> List[Category]:
    return list(session.execute(select(Category).order_by(Category.name.asc())).scalars().all())


def find_category_by_slug(session: Session, slug: str) -> Optional[Category]:
    return session.execute(select(Category).where(Category.slug == slug)).scalar_one_or_none()
