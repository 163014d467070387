"""Generic asynchronous CRUD helpers for SQLModel entities."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import delete as sql_delete
from sqlalchemy import func
from sqlalchemy import update as sql_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, select

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from sqlalchemy.orm import InstrumentedAttribute
    from sqlmodel.ext.asyncio.session import AsyncSession

ModelT = TypeVar("ModelT", bound=SQLModel)


async def _flush_or_rollback(session: AsyncSession) -> None:
    """Flush changes and rollback on SQLAlchemy errors."""
    try:
        await session.flush()
    except SQLAlchemyError:
        await session.rollback()
        raise


async def _commit_or_rollback(session: AsyncSession) -> None:
    """Commit transaction and rollback on SQLAlchemy errors."""
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise


async def get_by_id(
    session: AsyncSession,
    model: type[ModelT],
    obj_id: object,
) -> ModelT | None:
    """Fetch one model instance by id or return None."""
    stmt = select(model).where(getattr(model, "id") == obj_id).limit(1)
    return (await session.exec(stmt)).first()


async def create(
    session: AsyncSession,
    model: type[ModelT],
    *,
    commit: bool = True,
    refresh: bool = True,
    **data: object,
) -> ModelT:
    """Create, flush, optionally commit, and optionally refresh an object."""
    obj = model.model_validate(data)
    session.add(obj)
    await _flush_or_rollback(session)
    if commit:
        await _commit_or_rollback(session)
    if refresh:
        await session.refresh(obj)
    return obj


async def list_where(
    session: AsyncSession,
    model: type[ModelT],
    *criteria: object,
    order_by: Iterable[Any] = (),
    limit: int | None = None,
) -> list[ModelT]:
    """List objects filtered by explicit SQL criteria."""
    stmt = select(model)
    if criteria:
        stmt = stmt.where(*criteria)
    for ordering in order_by:
        stmt = stmt.order_by(ordering)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(await session.exec(stmt))


async def update_returning(
    session: AsyncSession,
    model: type[ModelT],
    *criteria: object,
    values: Mapping[str, Any],
    commit: bool = True,
) -> list[ModelT]:
    """Run one guarded UPDATE and return the rows it changed.

    The WHERE criteria act as the compare-and-swap guard: a row only comes back
    if it still matched when the statement ran.
    """
    stmt: Any = (
        sql_update(model)
        .where(*criteria)
        .values(**values)
        .returning(model)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await session.exec(stmt)
        rows = list(result.scalars().all())
    except SQLAlchemyError:
        await session.rollback()
        raise
    if commit:
        await _commit_or_rollback(session)
    return rows


async def delete_where(
    session: AsyncSession,
    model: type[ModelT],
    *criteria: object,
    commit: bool = False,
) -> int:
    """Delete rows matching criteria and return affected row count."""
    stmt: Any = sql_delete(model)
    if criteria:
        stmt = stmt.where(*criteria)
    result = await session.exec(stmt)
    if commit:
        await _commit_or_rollback(session)
    rowcount = getattr(result, "rowcount", None)
    return int(rowcount) if isinstance(rowcount, int) else 0


async def count_grouped(
    session: AsyncSession,
    column: InstrumentedAttribute[Any],
    *criteria: object,
) -> dict[Any, int]:
    """Return `{value: row_count}` for `column`, optionally filtered."""
    stmt: Any = select(column, func.count()).group_by(column)
    if criteria:
        stmt = stmt.where(*criteria)
    result = await session.exec(stmt)
    return {value: int(count) for value, count in result.all()}
