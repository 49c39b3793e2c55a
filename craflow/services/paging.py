import math
from typing import Any, Callable

from ..config import settings
from ..schemas.cras import Page


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def paginate(query, page: Any = 1, per_page: Any = None, serialize: Callable[[Any], Any] = lambda item: item) -> Page:
    """Offset pagination; per_page is capped at settings.max_per_page."""
    page = _positive_int(page, 1)
    per_page = min(_positive_int(per_page, settings.default_per_page), settings.max_per_page)
    total = query.count()
    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    return Page(
        items=[serialize(row) for row in rows],
        page=page,
        per_page=per_page,
        total=total,
        pages=math.ceil(total / per_page) if total else 0,
    )
