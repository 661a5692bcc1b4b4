import math
from dataclasses import dataclass
from typing import Optional

from fastapi import Query

from core.config import PAGE_SIZE_LIMIT
from utils.errors import ValidationError

# largest offset a SQL BIGINT can hold
MAX_OFFSET = 2**63 - 1


@dataclass(frozen=True)
class PageParams:
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "pages": math.ceil(total / self.limit),
        }


def parse_page_params(page: Optional[str] = None, limit: Optional[str] = None, default_limit: int = 10) -> PageParams:
    """Validate raw ``page``/``limit`` query strings (1-indexed, limit capped)."""
    try:
        page_num = int(page) if page not in (None, "") else 1
        limit_num = int(limit) if limit not in (None, "") else default_limit
    except (TypeError, ValueError):
        raise ValidationError("Page and limit must be numeric values")

    if page_num < 1:
        raise ValidationError("Page must be 1 or greater")
    if limit_num < 1 or limit_num > PAGE_SIZE_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {PAGE_SIZE_LIMIT}")
    if (page_num - 1) * limit_num > MAX_OFFSET:
        raise ValidationError("Page is out of range")
    return PageParams(page=page_num, limit=limit_num)


def page_params(page: Optional[str] = Query(None), limit: Optional[str] = Query(None)) -> PageParams:
    return parse_page_params(page, limit)
