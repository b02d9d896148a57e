"""
Order Service — pricing & inventory check

Prices a list of lines against the current catalog. Read-only: the same
function gives the provisional quote before payment and the authoritative
re-quote inside the order-creation transaction, since stock can move in
between.

Catalog prices are stored in major units; the quote is in minor units
(price × 100). This is the only place the conversion happens.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ErrorKind, Failure
from .models import Product

MINOR_UNITS_PER_MAJOR = 100


@dataclass(frozen=True, slots=True)
class LineItem:
    product_id: str
    quantity: int


@dataclass(frozen=True, slots=True)
class QuotedLine:
    product_id: str
    product_name: str
    quantity: int
    unit_price_minor: int

    @property
    def line_total(self) -> int:
        return self.unit_price_minor * self.quantity


@dataclass(frozen=True, slots=True)
class Quote:
    lines: tuple[QuotedLine, ...]
    total: int


def to_minor_units(major: int) -> int:
    return major * MINOR_UNITS_PER_MAJOR


async def quote_order(
    session: AsyncSession,
    items: Sequence[LineItem],
) -> Quote | Failure:
    """
    Look up every line's product and check stock.

    Returns a Failure(NOT_FOUND) for a missing product and
    Failure(INSUFFICIENT_STOCK) when a line asks for more than is in stock.
    Lines repeating the same product are checked against their combined
    quantity.
    """
    if not items:
        return Failure(ErrorKind.VALIDATION, "Order must contain at least one item")

    product_ids = {item.product_id for item in items}
    result = await session.execute(select(Product).where(Product.id.in_(sorted(product_ids))))
    products = {p.id: p for p in result.scalars()}

    requested: dict[str, int] = {}
    lines: list[QuotedLine] = []
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            return Failure(ErrorKind.NOT_FOUND, f"Product {item.product_id} not found")

        requested[product.id] = requested.get(product.id, 0) + item.quantity
        if product.stock < requested[product.id]:
            return Failure(
                ErrorKind.INSUFFICIENT_STOCK,
                f"Insufficient stock for {product.name}",
            )

        lines.append(
            QuotedLine(
                product_id=product.id,
                product_name=product.name,
                quantity=item.quantity,
                unit_price_minor=to_minor_units(product.price),
            )
        )

    return Quote(lines=tuple(lines), total=sum(line.line_total for line in lines))
