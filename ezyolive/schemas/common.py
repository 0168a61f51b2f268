from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ..core.clock import to_practice_time

class Pagination(BaseModel):
    page: int
    limit: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, pages=-(-total // limit) if limit else 0)

def practice_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Field validator: store every timestamp as naive practice-local time."""
    if value is None:
        return None
    return to_practice_time(value)
