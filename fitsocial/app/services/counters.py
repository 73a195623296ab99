"""
Atomic denormalized counters.

Every counter change is a single ``UPDATE ... SET col = col + n`` executed in
the caller's transaction, so concurrent requests never lose an update and a
rolled back action never leaves a counter behind.
"""

from sqlalchemy import case, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute


async def increment(db: AsyncSession, column: InstrumentedAttribute, row_id: int, by: int = 1) -> bool:
    """
    Add ``by`` to ``column`` on the row with primary key ``row_id``.

    Returns:
        True if the row exists and was updated
    """
    model = column.class_
    result = await db.execute(
        update(model)
        .where(model.id == row_id)
        .values({column.key: column + by})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def decrement(db: AsyncSession, column: InstrumentedAttribute, row_id: int, by: int = 1) -> bool:
    """
    Subtract ``by`` from ``column``, clamping at zero.

    Returns:
        True if the row exists and was updated
    """
    if by <= 0:
        return False
    model = column.class_
    result = await db.execute(
        update(model)
        .where(model.id == row_id)
        .values({column.key: _clamped(column, by)})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def reset(db: AsyncSession, column: InstrumentedAttribute, row_id: int) -> None:
    model = column.class_
    await db.execute(
        update(model)
        .where(model.id == row_id)
        .values({column.key: 0})
        .execution_options(synchronize_session=False)
    )


def _clamped(column: InstrumentedAttribute, by: int):
    return case((column > by, column - by), else_=0)
