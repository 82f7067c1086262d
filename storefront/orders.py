from typing import List

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, selectinload

from .errors import BadRequest, NotFound
from .models import Order, OrderItem, OrderStatus


def _with_items(stmt: Select) -> Select:
    return stmt.options(selectinload(Order.items).selectinload(OrderItem.product)).order_by(
        Order.created_at.desc(), Order.id.desc()
    )


def orders_by_email(session: Session, email: str) -> List[Order]:
    email = (email or "").strip().lower()
    if not email:
        raise BadRequest("email required")
    return list(session.execute(_with_items(select(Order).where(Order.user_email == email))).scalars().all())


def orders_for_user(session: Session, user_id: int) -> List[Order]:
    return list(session.execute(_with_items(select(Order).where(Order.user_id == user_id))).scalars().all())


def list_orders(session: Session) -> List[Order]:
    return list(session.execute(_with_items(select(Order))).scalars().all())


def parse_status(value) -> OrderStatus:
    if not value:
        raise BadRequest("status required")
    try:
        return OrderStatus(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise BadRequest(f"invalid status; expected one of {allowed}") from None


def update_order_status(session: Session, order_id: int, value) -> Order:
    status = parse_status(value)
    order = session.get(Order, order_id)
    if order is None:
        raise NotFound("Not found")
    order.status = status
    session.flush()
    session.refresh(order)
    return order
