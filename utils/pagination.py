# utils/pagination.py
import math
from typing import TypeVar, Generic, List

from pydantic import BaseModel

T = TypeVar('T')


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated list payload."""
    items: List[T]
    total: int
    page: int
    limit: int
    total_pages: int


def paginate(items: List[T], total: int, page: int, limit: int) -> PaginatedResponse[T]:
    return PaginatedResponse[T](
        items=items,
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if limit else 0,
    )
