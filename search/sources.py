"""
Search sources.

Each source decides for itself whether it applies to a (scope, principal)
pair, then runs a blocking lookup. Sources are read-only and independent of
each other, so the aggregator runs them concurrently.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from loguru import logger
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from auth.models import Profile
from auth.role_resolver import role_of
from auth.roles import Principal, Role, has_role
from core.errors import UpstreamError
from search.schemas import ResultKind, SearchResult, SearchScope
from storage.object_store.buckets import (
    EMPTY_FOLDER_PLACEHOLDER,
    ObjectStore,
    format_file_size,
)

SOURCE_LIMIT = 10
FILE_LISTING_LIMIT = 100


class SearchSource(ABC):
    """A single source of search results"""

    name: str = "source"
    scope: SearchScope

    def applies_to(self, scope: SearchScope, principal: Optional[Principal]) -> bool:
        return scope.includes(self.scope)

    @abstractmethod
    def search(self, query: str, principal: Optional[Principal]) -> List[SearchResult]:
        """Blocking lookup. `query` is already normalized."""
        raise NotImplementedError


# ==================== PAGES ====================

PUBLIC_PAGES = [
    SearchResult(id="home", type=ResultKind.PAGE, title="Home",
                 description="Main landing page", url="/"),
    SearchResult(id="about", type=ResultKind.PAGE, title="About Us",
                 description="Learn about our mission and values", url="/about"),
    SearchResult(id="contact", type=ResultKind.PAGE, title="Contact Us",
                 description="Get in touch with our team", url="/contact"),
    SearchResult(id="privacy", type=ResultKind.PAGE, title="Privacy Policy",
                 description="Our privacy and data protection policies", url="/privacy"),
    SearchResult(id="terms", type=ResultKind.PAGE, title="Terms of Service",
                 description="Terms and conditions of use", url="/terms"),
]


class PagesSource(SearchSource):
    """Static catalog of public pages; open to everyone."""

    name = "pages"
    scope = SearchScope.PAGES

    def __init__(self, pages: List[SearchResult] = None):
        self.pages = pages if pages is not None else PUBLIC_PAGES

    def search(self, query: str, principal: Optional[Principal]) -> List[SearchResult]:
        return [
            page.model_copy()
            for page in self.pages
            if query in page.title.lower() or query in (page.description or "").lower()
        ]


# ==================== USERS ====================


class UsersSource(SearchSource):
    """User directory, admins only."""

    name = "users"
    scope = SearchScope.USERS

    def __init__(self, session: Session):
        self.session = session

    def applies_to(self, scope: SearchScope, principal: Optional[Principal]) -> bool:
        if not super().applies_to(scope, principal):
            return False
        return principal is not None and principal.role is not None and has_role(principal.role, Role.ADMIN)

    def search(self, query: str, principal: Optional[Principal]) -> List[SearchResult]:
        pattern = f"%{query}%"
        try:
            profiles = (
                self.session.query(Profile)
                .options(joinedload(Profile.identity), joinedload(Profile.role))
                .filter(or_(
                    Profile.first_name.ilike(pattern),
                    Profile.last_name.ilike(pattern),
                    Profile.id == query,
                ))
                .order_by(Profile.first_name, Profile.id)
                .limit(SOURCE_LIMIT)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"[SEARCH] User directory query failed: {type(e).__name__}: {e}")
            raise UpstreamError("User search failed", cause=e)

        results = []
        for profile in profiles:
            email = profile.identity.email if profile.identity else None
            role = role_of(profile)
            results.append(SearchResult(
                id=profile.id,
                type=ResultKind.USER,
                title=f"{profile.first_name or ''} {profile.last_name or ''}".strip() or profile.id,
                description=email,
                email=email,
                role=role.label if role else None,
                url=f"/admin/users/{profile.id}",
            ))
        return results


# ==================== FILES ====================


class FilesSource(SearchSource):
    """The caller's own files."""

    name = "files"
    scope = SearchScope.FILES

    def __init__(self, store: ObjectStore):
        self.store = store

    def applies_to(self, scope: SearchScope, principal: Optional[Principal]) -> bool:
        return super().applies_to(scope, principal) and principal is not None

    def search(self, query: str, principal: Optional[Principal]) -> List[SearchResult]:
        objects = self.store.list(f"{principal.id}/", limit=FILE_LISTING_LIMIT)

        matched = [
            obj for obj in objects
            if obj.name != EMPTY_FOLDER_PLACEHOLDER and query in obj.name.lower()
        ][:SOURCE_LIMIT]

        return [
            SearchResult(
                id=obj.name,
                type=ResultKind.FILE,
                title=obj.name,
                description=f"Size: {format_file_size(obj.size)}",
                url="/dashboard/files",
            )
            for obj in matched
        ]
