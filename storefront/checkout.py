"""
Checkout: validate a cart against one product snapshot, then persist the
order and decrement stock in a single transaction.

Isolation contract: the stock decrement is a guarded
``UPDATE products SET stock = stock - :q WHERE id = :id AND stock >= :q``
executed inside the order transaction. A guard that matches no row aborts
and rolls back the whole checkout with ``InsufficientStock``, so two
checkouts validated against the same stale snapshot can never both commit.
On PostgreSQL the snapshot read also takes row locks (``FOR UPDATE``).
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import CheckoutFailed, EmptyCart, InsufficientStock, InvalidQuantity, ProductNotFound
from .models import Order, OrderItem, Product, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PlannedLine:
    product_id: int
    product_name: str
    quantity: int
    price_cents: int


@dataclass
class CheckoutPlan:
    lines: List[PlannedLine]
    total_cents: int
    user_email: Optional[str] = None
    user_id: Optional[int] = None


def fetch_products(session: Session, product_ids: Sequence[int]) -> Dict[int, Product]:
    """
    Read the cart's products in one query, locking the rows where the
    backend supports it. Missing products are omitted.
    """
    if not product_ids:
        return {}
    rows = session.execute(
        select(Product).where(Product.id.in_(sorted(set(product_ids)))).with_for_update()
    ).scalars().all()
    return {p.id: p for p in rows}


def prepare_checkout(
    session: Session,
    cart: Sequence[CartLine],
    email: Optional[str] = None,
    user: Optional[User] = None,
) -> CheckoutPlan:
    """
    Validate ``cart`` and price it from a single read of the products.

    Checks run per line in cart order; the first failure raises before
    anything is written.
    """
    if not cart:
        raise EmptyCart()

    products = fetch_products(session, [line.product_id for line in cart])
    requested: Dict[int, int] = {}
    lines: List[PlannedLine] = []
    for line in cart:
        p = products.get(line.product_id)
        if p is None:
            raise ProductNotFound(line.product_id)
        if line.quantity < 1:
            raise InvalidQuantity()
        requested[p.id] = requested.get(p.id, 0) + line.quantity
        if p.stock < requested[p.id]:
            raise InsufficientStock(p.name)
        lines.append(PlannedLine(p.id, p.name, line.quantity, p.price_cents))

    total = sum(line.price_cents * line.quantity for line in lines)

    user_email = (email or "").strip().lower() or None
    if user_email is None and user is not None:
        user_email = user.email
    return CheckoutPlan(
        lines=lines,
        total_cents=total,
        user_email=user_email,
        user_id=user.id if user is not None else None,
    )


def reserve_stock(session: Session, line: PlannedLine) -> None:
    res = session.execute(
        update(Product)
        .where(Product.id == line.product_id, Product.stock >= line.quantity)
        .values(stock=Product.stock - line.quantity)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise InsufficientStock(line.product_name)


def commit_checkout(session: Session, plan: CheckoutPlan) -> Order:
    """
    Write the order, its items and the stock decrements, then commit.
    Everything is rolled back if any step fails.
    """
    try:
        order = Order(user_email=plan.user_email, user_id=plan.user_id, total_cents=plan.total_cents)
        session.add(order)
        session.flush()  # get order.id

        for line in plan.lines:
            session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price_cents=line.price_cents,
                )
            )
            reserve_stock(session, line)

        session.commit()
    except InsufficientStock as e:
        session.rollback()
        logger.warning("checkout aborted at commit: %s", e.message)
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("checkout commit failed")
        raise CheckoutFailed() from e

    logger.info("order %s created, total_cents=%s", order.id, order.total_cents)
    return order


def checkout(
    session: Session,
    cart: Sequence[CartLine],
    email: Optional[str] = None,
    user: Optional[User] = None,
) -> Order:
    plan = prepare_checkout(session, cart, email=email, user=user)
    return commit_checkout(session, plan)
