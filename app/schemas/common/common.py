# app/schemas/common.py
from pydantic import BaseModel
from typing import List, Dict, Any, Optional

class ErrorResponse(BaseModel):
    success: bool = False
    data: Optional[Any] = None
    error: str
    code: Optional[str] = None

class PaginatedResponse(BaseModel):
    items: List[Any]
    pagination: Dict[str, Any]

    @classmethod
    def build(cls, items: List[Any], total: int, page: int, limit: int) -> "PaginatedResponse":
        return cls(
            items=items,
            pagination={
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit if limit else 0,
            },
        )
