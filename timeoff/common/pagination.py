"""Pagination helpers for leave-request listings."""

from __future__ import annotations

import math
from typing import Any, Generic, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func
from sqlalchemy.ext.asyncio import AsyncSession

from timeoff.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

T = TypeVar("T")


# ── FastAPI dependency ──────────────────────────────────────────────

class PaginationParams:
    """Inject via ``Depends(PaginationParams)`` on any list endpoint."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
        page_size: int = Query(
            default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE,
            description=f"Items per page (max {MAX_PAGE_SIZE})",
        ),
        sort: Optional[str] = Query(
            default=None,
            description='Sort field; prefix "-" for DESC (e.g. "-applied_at")',
        ),
    ) -> None:
        self.page = page
        self.page_size = page_size
        self.sort = sort


# ── Pydantic response models ───────────────────────────────────────

class PaginationMeta(BaseModel):
    """Metadata block embedded in every paginated response."""

    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PaginatedResponse(BaseModel, Generic[T]):
    """Standard envelope: ``{"data": [...], "meta": {...}}``."""

    data: Sequence[T]
    meta: PaginationMeta


# ── SQLAlchemy helper ───────────────────────────────────────────────

async def paginate(
    session: AsyncSession,
    query: Select,
    *,
    model: Any,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort: Optional[str] = None,
) -> tuple[Sequence[Any], PaginationMeta]:
    """Run *query* for one page and return ``(rows, meta)``.

    Sort names that are not attributes of *model* are ignored rather than
    interpolated into SQL.
    """
    if sort:
        descending = sort.startswith("-")
        col = getattr(model, sort.lstrip("-"), None)
        if col is not None:
            query = query.order_by(None).order_by(col.desc() if descending else col.asc())

    count_q = query.with_only_columns(func.count()).order_by(None)
    total: int = (await session.execute(count_q)).scalar_one()

    rows = (
        await session.execute(query.offset((page - 1) * page_size).limit(page_size))
    ).scalars().all()

    total_pages = math.ceil(total / page_size) if total else 0
    return rows, PaginationMeta(
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )
