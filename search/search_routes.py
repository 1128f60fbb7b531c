"""
Search API routes.

GET /search?q=<text>&type=<all|users|files|pages>
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from loguru import logger

from core.context import RequestContext, get_request_context
from core.errors import UpstreamError, ValidationError
from search.aggregator import SearchAggregator, SearchConfig
from search.sources import FilesSource, PagesSource, UsersSource

router = APIRouter(tags=["search"])


def get_search_config() -> SearchConfig:
    return SearchConfig()


def build_aggregator(ctx: RequestContext, config: SearchConfig) -> SearchAggregator:
    return SearchAggregator(
        sources=[PagesSource(), UsersSource(ctx.session), FilesSource(ctx.store)],
        config=config,
    )


@router.get("/search")
async def search(
    q: Optional[str] = Query(None, description="Search text, at least 2 characters"),
    type: Optional[str] = Query("all", description="all, users, files or pages"),
    ctx: RequestContext = Depends(get_request_context),
    config: SearchConfig = Depends(get_search_config),
):
    """Search public pages, the user directory (admins) and the caller's files."""
    try:
        principal = ctx.principal()
        aggregator = build_aggregator(ctx, config)
        response = await aggregator.search(q, type, principal)
        return response.model_dump(exclude_none=True, mode="json")

    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except UpstreamError as e:
        logger.error(f"[SEARCH] Search failed: {e.message}")
        return JSONResponse(status_code=500, content={"error": "Search failed"})
    except Exception as e:
        logger.exception(f"[SEARCH] Unexpected search error: {e}")
        return JSONResponse(status_code=500, content={"error": "Search failed"})
