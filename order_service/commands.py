"""
Order Service — command handlers (write side)

Every command is one database transaction. Stock effects are committed
together with the order row that causes them or not at all:

    create_order   re-quote → insert order + items → decrement stock
    cancel_order   check status → flip to CANCELLED → restore stock

Expected business failures are returned as OrderResult values; database
errors other than a duplicate payment reference propagate to the caller.
The domain event is published only after commit.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import redis.asyncio as aioredis
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import events, queries
from .aggregate import OrderAggregate
from .errors import ErrorKind, Failure
from .models import Order, OrderItem, OrderStatus, PaymentStatus, Product, utcnow
from .pricing import LineItem, quote_order

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderResult:
    """
    Outcome of an order command.

    duplicate is set when create_order found the payment reference already
    processed and returned the existing order instead of creating one.
    """

    success: bool
    order: dict | None = None
    error: Failure | None = None
    duplicate: bool = False

    @classmethod
    def ok(cls, order: dict, duplicate: bool = False) -> "OrderResult":
        return cls(success=True, order=order, duplicate=duplicate)

    @classmethod
    def fail(cls, error: Failure) -> "OrderResult":
        return cls(success=False, error=error)


async def create_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    user_id: str,
    items: Sequence[LineItem],
    transaction_reference: str,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
) -> OrderResult:
    """
    Create the order for a confirmed payment reference.

    1. Return the existing order if the reference was already processed
    2. Re-quote the lines against current stock
    3. Insert the order and its items
    4. Decrement stock, guarded on availability
    5. Commit, then publish OrderCreated

    At most one order exists per reference: a reference that collides on the
    unique constraint while inserting also yields the existing order with
    duplicate=True.
    """
    existing = await queries.get_order_by_reference(session, transaction_reference)
    if existing is not None:
        await session.rollback()
        logger.info("Reference %s already processed as order %s", transaction_reference, existing["id"])
        return OrderResult.ok(existing, duplicate=True)

    try:
        # Stock may have moved since the provisional quote; price again here.
        quote = await quote_order(session, items)
        if isinstance(quote, Failure):
            await session.rollback()
            return OrderResult.fail(quote)

        now = utcnow()
        order = Order(
            user_id=user_id,
            total_amount=quote.total,
            status=OrderStatus.PENDING,
            payment_status=payment_status,
            payment_reference=transaction_reference,
            created_at=now,
            updated_at=now,
            items=[
                OrderItem(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price_at_order=line.unit_price_minor,
                )
                for line in quote.lines
            ],
        )
        session.add(order)
        await session.flush()

        for line in quote.lines:
            result = await session.execute(
                update(Product)
                .where(Product.id == line.product_id, Product.stock >= line.quantity)
                .values(stock=Product.stock - line.quantity, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return OrderResult.fail(
                    Failure(
                        ErrorKind.INSUFFICIENT_STOCK,
                        f"Insufficient stock for {line.product_name}",
                    )
                )

        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await queries.get_order_by_reference(session, transaction_reference)
        if existing is None:
            raise
        logger.info("Reference %s inserted concurrently as order %s", transaction_reference, existing["id"])
        return OrderResult.ok(existing, duplicate=True)

    created = await queries.get_order(session, order.id)
    logger.info("Order %s created for reference %s", order.id, transaction_reference)

    await events.publish(
        redis,
        events.OrderCreated(
            order_id=order.id,
            user_id=user_id,
            total_amount=order.total_amount,
            payment_reference=transaction_reference,
            payment_status=payment_status.value,
            items=[
                events.OrderLineSnapshot(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price_at_order=item.price_at_order,
                )
                for item in order.items
            ],
            timestamp=now,
        ),
    )
    return OrderResult.ok(created)


async def cancel_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: str,
) -> OrderResult:
    """
    Cancel a pending order and put its items back in stock.

    1. Load the order and ask the aggregate whether it may be cancelled
    2. Flip the status, guarded on it still being PENDING
    3. Restore each item's quantity to its product
    4. Commit, then publish OrderCancelled
    """
    result = await session.execute(
        select(Order).where(Order.id == order_id).options(selectinload(Order.items))
    )
    order = result.scalar_one_or_none()
    if order is None:
        await session.rollback()
        return OrderResult.fail(Failure(ErrorKind.NOT_FOUND, "Order not found"))

    agg = OrderAggregate.from_row(order)
    failure = agg.cancel()
    if failure is not None:
        await session.rollback()
        return OrderResult.fail(failure)

    now = utcnow()
    # Guarded on the old status so two concurrent cancels restore stock once.
    flipped = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
        .values(status=agg.status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount != 1:
        await session.rollback()
        return OrderResult.fail(Failure(ErrorKind.INVALID_STATE, "Order is no longer pending"))

    restored = [
        events.OrderLineSnapshot(
            product_id=item.product_id,
            quantity=item.quantity,
            price_at_order=item.price_at_order,
        )
        for item in order.items
    ]
    for line in restored:
        await session.execute(
            update(Product)
            .where(Product.id == line.product_id)
            .values(stock=Product.stock + line.quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    await session.commit()

    cancelled = await queries.get_order(session, order_id)
    logger.info("Order %s cancelled, %d line(s) restocked", order_id, len(restored))

    await events.publish(
        redis,
        events.OrderCancelled(
            order_id=order_id,
            user_id=agg.user_id,
            restored=restored,
            timestamp=now,
        ),
    )
    return OrderResult.ok(cancelled)
