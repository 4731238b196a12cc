# Overview: LIMIT/OFFSET pagination shared by the list endpoints.

from __future__ import annotations


def paginate(query, *, page: int, page_size: int) -> tuple[list, dict]:
    """
    Run a query page. Returns (rows, meta) where meta carries
    page, page_size, total and pages for the response envelope.
    """
    total = query.order_by(None).count()
    pages = (total + page_size - 1) // page_size if total > 0 else 0
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return rows, {
        "page": page,
        "page_size": page_size,
        "total": total,
        "pages": pages,
    }
