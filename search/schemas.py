"""
Pydantic schemas for the search API.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SearchScope(str, Enum):
    ALL = "all"
    USERS = "users"
    FILES = "files"
    PAGES = "pages"

    def includes(self, scope: "SearchScope") -> bool:
        return self is SearchScope.ALL or self is scope


class ResultKind(str, Enum):
    PAGE = "page"
    USER = "user"
    FILE = "file"


# Merge priority: pages, then users, then files
KIND_ORDER = {ResultKind.PAGE: 0, ResultKind.USER: 1, ResultKind.FILE: 2}


class SearchResult(BaseModel):
    """One hit from any source"""
    id: str
    type: ResultKind
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class SearchResponse(BaseModel):
    success: bool = True
    query: str
    results: List[SearchResult] = Field(default_factory=list)
    total: int = Field(0, description="Number of matches before the result cap")
