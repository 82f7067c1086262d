"""
Shared fixtures: a throwaway SQLite file per test behind the same Database
handle the app uses, plus a TestClient wired to it.
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from storefront.config import Settings
from storefront.db import Database
from storefront.main import create_app
from storefront.models import Category, Product

ADMIN_KEY = "test-admin-key"
BASE = "/api/v1"


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite+pysqlite:///{tmp_path / 'store.db'}")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    s = database.session()
    yield s
    s.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+pysqlite:///{tmp_path / 'store.db'}",
        admin_key=ADMIN_KEY,
        session_secret="test-session-secret",
        cors_origins=[],
    )


@pytest.fixture
def client(settings, database):
    app = create_app(settings, database)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_category(session):
    def _make(name="Clothing", slug=None):
        cat = Category(name=name, slug=slug or name.lower())
        session.add(cat)
        session.commit()
        return cat

    return _make


@pytest.fixture
def make_product(session, make_category):
    """Creates products with strictly increasing created_at."""
    state = {"n": 0, "category": None}
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _make(name=None, price_cents=1000, stock=5, description="", category=None, slug=None):
        if category is None:
            if state["category"] is None:
                state["category"] = make_category()
            category = state["category"]
        state["n"] += 1
        n = state["n"]
        name = name or f"Product {n}"
        p = Product(
            name=name,
            slug=slug or f"product-{n}",
            description=description,
            price_cents=price_cents,
            stock=stock,
            category_id=category.id,
            created_at=start + timedelta(minutes=n),
        )
        session.add(p)
        session.commit()
        return p

    return _make
