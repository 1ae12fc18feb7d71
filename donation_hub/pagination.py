"""
Pagination helper shared by every list endpoint.
"""
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from .config import get_settings


def paginate(db: Session, query: Select, page: int = 1, per_page: Optional[int] = None) -> Dict[str, Any]:
    """
    Apply pagination to a SQLAlchemy select.

    Args:
        db: Database session
        query: Base select, already filtered and ordered
        page: Page number (1-indexed)
        per_page: Items per page; defaults to DEFAULT_PAGE_SIZE, capped at MAX_PAGE_SIZE

    Returns:
        Dictionary with items, total, page, page_size, total_pages, has_next, has_previous
    """
    settings = get_settings()
    page = max(1, page or 1)
    page_size = per_page or settings.default_page_size
    page_size = max(1, min(settings.max_page_size, page_size))

    count_stmt = select(func.count()).select_from(query.order_by(None).subquery())
    total = db.execute(count_stmt).scalar() or 0
    total_pages = (total + page_size - 1) // page_size if total > 0 else 1

    items = db.execute(query.offset((page - 1) * page_size).limit(page_size)).scalars().all()

    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_previous": page > 1,
    }
