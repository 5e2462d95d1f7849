from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from sqlalchemy.orm import Query


@dataclass
class PageResult:
    items: List[Any]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self, serializer: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "data": [serializer(item) for item in self.items],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
        }


def paginate(query: Query, page: int, limit: int) -> PageResult:
    """Count the full result set, then fetch a single page of it."""
    total = query.order_by(None).count()
    offset = (page - 1) * limit
    items = query.offset(offset).limit(limit).all()
    return PageResult(items=items, total=total, page=page, limit=limit)
