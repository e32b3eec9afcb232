from typing import Callable, Optional

from sqlalchemy import func
from sqlmodel import select


def paginate(
    *,
    session,
    query,
    page: int = 1,
    limit: int = 10,
    serialize: Optional[Callable] = None,
):
    """Run ``query`` one page at a time; ``serialize`` maps each row."""

    page = max(page, 1)
    limit = limit if limit > 0 else 10

    total = session.exec(
        select(func.count()).select_from(query.subquery())
    ).one()

    rows = session.exec(query.offset((page - 1) * limit).limit(limit)).all()

    return {
        "total_items": total,
        "total_pages": -(-total // limit),
        "current_page": page,
        "limit": limit,
        "results": [serialize(r) for r in rows] if serialize else list(rows),
    }
