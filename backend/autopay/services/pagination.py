"""Page/page_size handling shared by the list endpoints"""
import math
from typing import Any, Dict, List, Tuple

from sqlalchemy.orm import Query

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def normalize_page(page: int, page_size: int) -> Tuple[int, int]:
    """Clamp page to >= 1; out-of-range page sizes fall back to the default"""
    if page < 1:
        page = 1
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE
    return page, page_size


def paginate(query: Query, page: int, page_size: int) -> Tuple[List[Any], int]:
    """Return (rows, total). The query must already carry a deterministic order_by."""
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return rows, total


def page_envelope(data: List[Any], page: int, page_size: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / page_size) if total else 0
    return {
        "data": data,
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": total_pages,
        "next_page": page + 1 if page < total_pages else None,
        "prev_page": page - 1 if page > 1 else None,
    }
