import math
from typing import Generic, List, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PageOut(BaseModel, Generic[T]):
    items: List[T]
    page: int
    page_size: int
    total: int
    total_pages: int
    has_prev: bool
    has_next: bool


def page_out(items: list, page: int, page_size: int, total: int) -> dict:
    total_pages = max(1, math.ceil(total / page_size))
    return dict(
        items=items,
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages,
        has_prev=page > 1,
        has_next=page < total_pages,
    )


class MessageOut(BaseModel):
    success: bool = True
    message: str
