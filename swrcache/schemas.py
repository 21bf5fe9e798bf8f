"""
Pydantic schemas for the cache inspection API
"""
from pydantic import BaseModel
from typing import Any, List, Optional


# ===== RECORD SCHEMAS =====

class ErrorInfo(BaseModel):
    """Error stored on a record"""
    type: str
    message: str


class CacheRecordResponse(BaseModel):
    """Snapshot of one cache key"""
    key: str
    data: Any = None
    error: Optional[ErrorInfo] = None
    isValidating: bool = False
    updatedAt: Optional[str] = None
    retryCount: int = 0
    subscribers: int = 0


class RevalidateResponse(BaseModel):
    """Outcome of a manual revalidation"""
    revalidated: bool
    record: CacheRecordResponse


# ===== MUTATION SCHEMAS =====

class MutateRequest(BaseModel):
    """Body for PUT /cache/entries/{key}"""
    data: Any
    revalidate: bool = False


# ===== EVENT SCHEMAS =====

class EventResponse(BaseModel):
    """Result of forwarding a focus/reconnect event"""
    event: str
    online: bool
    visible: bool


class KeyList(BaseModel):
    """Known cache keys"""
    keys: List[str]
    count: int