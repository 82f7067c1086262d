import hmac
import logging
import re
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .catalog import find_category_by_slug
from .errors import BadRequest, Conflict, NotFound
from .models import Category, OrderItem, Product
from .schemas import CategoryCreateIn, ProductCreateIn, ProductPatchIn

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def make_slug(value: str) -> str:
    """'  Basic Tee (XL)! ' -> 'basic-tee-xl'"""
    return _NON_ALNUM.sub("-", (value or "").lower()).strip("-")


def check_admin_key(provided: Optional[str], expected: str) -> bool:
    # an unset secret never authorizes
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def _flush_or_conflict(session: Session, what: str) -> None:
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise Conflict(f"{what} slug already in use") from e


# ---------- Products ----------

def list_products(session: Session) -> List[Product]:
    stmt = select(Product).options(joinedload(Product.category)).order_by(Product.created_at.desc(), Product.id.desc())
    return list(session.execute(stmt).scalars().all())


def _require_category(session: Session, slug: str) -> Category:
    cat = find_category_by_slug(session, str(slug))
    if cat is None:
        raise BadRequest("category not found")
    return cat


def create_product(session: Session, payload: ProductCreateIn) -> Product:
    if not payload.name or payload.price_cents is None or not payload.category_slug:
        raise BadRequest("name, priceCents, categorySlug required")
    cat = _require_category(session, payload.category_slug)

    slug = make_slug(payload.slug) if payload.slug else make_slug(payload.name)
    if not slug:
        raise BadRequest("slug cannot be empty")
    p = Product(
        name=payload.name,
        slug=slug,
        description=payload.description or "",
        price_cents=payload.price_cents,
        image_url=payload.image_url,
        stock=payload.stock or 0,
        category_id=cat.id,
    )
    session.add(p)
    _flush_or_conflict(session, "product")
    session.refresh(p)
    logger.info("admin created product %s (%s)", p.id, p.slug)
    return p


NOT_NULLABLE = ("name", "description", "price_cents", "stock")


def update_product(session: Session, product_id: int, patch: ProductPatchIn) -> Product:
    """
    Apply only the fields present in ``patch``. The category is resolved
    before anything is written.
    """
    p = session.get(Product, product_id)
    if p is None:
        raise NotFound("Not found")

    fields = patch.model_fields_set
    for name in NOT_NULLABLE:
        if name in fields and getattr(patch, name) is None:
            raise BadRequest(f"{name} cannot be null")

    cat = None
    if "category_slug" in fields and patch.category_slug:
        cat = _require_category(session, patch.category_slug)

    if "name" in fields:
        p.name = patch.name
    if "slug" in fields:
        # present but cleared -> derive from the (possibly new) name
        p.slug = make_slug(patch.slug) if patch.slug else make_slug(p.name)
        if not p.slug:
            raise BadRequest("slug cannot be empty")
    if "description" in fields:
        p.description = patch.description
    if "price_cents" in fields:
        p.price_cents = patch.price_cents
    if "image_url" in fields:
        p.image_url = patch.image_url
    if "stock" in fields:
        p.stock = patch.stock
    if cat is not None:
        p.category_id = cat.id

    _flush_or_conflict(session, "product")
    session.refresh(p)
    return p


def delete_product(session: Session, product_id: int) -> None:
    p = session.get(Product, product_id)
    if p is None:
        raise NotFound("Not found")
    if session.execute(select(exists().where(OrderItem.product_id == product_id))).scalar():
        raise Conflict("product has orders and cannot be deleted")
    session.delete(p)
    session.flush()
    logger.info("admin deleted product %s", product_id)


# ---------- Categories ----------

def create_category(session: Session, payload: CategoryCreateIn) -> Category:
    if not payload.name:
        raise BadRequest("name required")
    slug = make_slug(payload.slug or payload.name)
    if not slug:
        raise BadRequest("slug cannot be empty")
    cat = Category(name=payload.name, slug=slug)
    session.add(cat)
    _flush_or_conflict(session, "category")
    session.refresh(cat)
    return cat
