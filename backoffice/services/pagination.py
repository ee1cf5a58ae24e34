import math
from typing import Any, Dict, List, Tuple

from fastapi import Query
from sqlalchemy.orm import Query as OrmQuery


MAX_LIMIT = 100


class PageParams:
    """Query dependency for ``page``/``limit`` paging."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=MAX_LIMIT),
    ):
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> Dict[str, Any]:
        pages = math.ceil(total / self.limit) if total else 0
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "pages": pages,
            "hasNextPage": self.page < pages,
            "hasPrevPage": self.page > 1,
        }


def paginate(query: OrmQuery, params: PageParams) -> Tuple[List[Any], Dict[str, Any]]:
    total = query.order_by(None).count()
    items = query.offset(params.offset).limit(params.limit).all()
    return items, params.meta(total)
