"""
Load a small demo catalog.

    python -m storefront.seed
"""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import Settings
from .db import Database
from .models import Category, Product

logger = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    {"name": "Basic Tee", "slug": "basic-tee", "description": "Soft cotton tee", "price_cents": 1999,
     "image_url": "https://picsum.photos/seed/tee/400/300", "stock": 50},
    {"name": "Hoodie", "slug": "hoodie", "description": "Comfy hoodie", "price_cents": 4999,
     "image_url": "https://picsum.photos/seed/hoodie/400/300", "stock": 30},
    {"name": "Cap", "slug": "cap", "description": "Adjustable cap", "price_cents": 1499,
     "image_url": "https://picsum.photos/seed/cap/400/300", "stock": 80},
    {"name": "Sneakers", "slug": "sneakers", "description": "Everyday sneakers", "price_cents": 7999,
     "image_url": "https://picsum.photos/seed/sneakers/400/300", "stock": 20},
]


def seed(session: Session) -> int:
    """Upsert the Clothing category and the demo products by slug. Returns the product count."""
    clothing = session.execute(select(Category).where(Category.slug == "clothing")).scalar_one_or_none()
    if clothing is None:
        clothing = Category(name="Clothing", slug="clothing")
        session.add(clothing)
        session.flush()

    for row in DEMO_PRODUCTS:
        p = session.execute(select(Product).where(Product.slug == row["slug"])).scalar_one_or_none()
        if p is None:
            p = Product(slug=row["slug"])
            session.add(p)
        for name, value in row.items():
            setattr(p, name, value)
        p.category_id = clothing.id
    session.flush()
    return len(DEMO_PRODUCTS)


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    database = Database(settings.database_url, schema=settings.db_schema)
    database.init_db()
    with database.session() as s, s.begin():
        count = seed(s)
    logger.info("seeded %d products", count)
    database.dispose()


if __name__ == "__main__":
    main()
