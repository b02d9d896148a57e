"""
Order Service — read side

Queries return plain dicts ready to be sent as JSON.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import Order, OrderItem, Product

_WITH_ITEMS = selectinload(Order.items).selectinload(OrderItem.product)


def serialize_order(order: Order) -> dict:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "total_amount": order.total_amount,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "payment_reference": order.payment_reference,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
        "items": [serialize_order_item(item) for item in order.items],
    }


def serialize_order_item(item: OrderItem) -> dict:
    # price_at_order is the snapshot; product.price is the catalog price today
    return {
        "id": item.id,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "price_at_order": item.price_at_order,
        "product": {
            "id": item.product.id,
            "name": item.product.name,
            "price": item.product.price,
        },
    }


def serialize_product(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "price": product.price,
        "stock": product.stock,
        "updated_at": product.updated_at.isoformat() if product.updated_at else None,
    }


async def get_order(session: AsyncSession, order_id: str) -> dict | None:
    result = await session.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(_WITH_ITEMS)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        return None
    return serialize_order(order)


async def get_order_by_reference(session: AsyncSession, reference: str) -> dict | None:
    result = await session.execute(
        select(Order)
        .where(Order.payment_reference == reference)
        .options(_WITH_ITEMS)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        return None
    return serialize_order(order)


async def list_user_orders(session: AsyncSession, user_id: str) -> list[dict]:
    """The user's orders, newest first."""
    result = await session.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .options(_WITH_ITEMS)
        .order_by(Order.created_at.desc())
    )
    return [serialize_order(order) for order in result.scalars()]


async def get_product(session: AsyncSession, product_id: str) -> dict | None:
    product = await session.get(Product, product_id)
    if product is None:
        return None
    return serialize_product(product)


async def list_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(select(Product).order_by(Product.name))
    return [serialize_product(p) for p in result.scalars()]
