"""
Federated search: fan a normalized query out to every source the caller may
use, then merge the results into one capped, ordered list.
"""

import asyncio
import os
import time
import uuid
from typing import List, Optional, Sequence, Tuple

import dotenv
from loguru import logger

from auth.roles import Principal
from core.errors import UpstreamError, ValidationError
from core.observability import TraceSpan, increment, log_metrics, trace_request
from search.schemas import KIND_ORDER, SearchResponse, SearchResult, SearchScope
from search.sources import SearchSource

dotenv.load_dotenv()

MIN_QUERY_LENGTH = 2
MAX_RESULTS = 20

ABORT = "abort"
DEGRADE = "degrade"


class SearchConfig:
    """Configuration for the search aggregator"""

    def __init__(self, failure_policy: Optional[str] = None, max_results: int = MAX_RESULTS):
        self.failure_policy = (failure_policy or os.getenv("SEARCH_FAILURE_POLICY", ABORT)).lower()
        if self.failure_policy not in (ABORT, DEGRADE):
            raise ValueError(f"Unknown SEARCH_FAILURE_POLICY: {self.failure_policy}")
        self.max_results = max_results


def normalize_query(raw: Optional[str]) -> str:
    query = (raw or "").strip().lower()
    if len(query) < MIN_QUERY_LENGTH:
        raise ValidationError("Query must be at least 2 characters", field="q")
    return query


def parse_scope(raw: Optional[str]) -> SearchScope:
    try:
        return SearchScope((raw or SearchScope.ALL.value).lower())
    except ValueError:
        raise ValidationError("Invalid search type", field="type")


def merge_results(batches: Sequence[List[SearchResult]], max_results: int = MAX_RESULTS) -> Tuple[List[SearchResult], int]:
    """Concatenate, order pages/users/files (stable), cap. Returns (results, total)."""
    merged = [result for batch in batches for result in batch]
    merged.sort(key=lambda r: KIND_ORDER[r.type])
    return merged[:max_results], len(merged)


class SearchAggregator:
    """Runs the applicable sources concurrently and merges their results."""

    def __init__(self, sources: List[SearchSource], config: Optional[SearchConfig] = None):
        self.sources = sources
        self.config = config or SearchConfig()

    async def _run_source(self, source: SearchSource, query: str, principal: Optional[Principal],
                          parent: TraceSpan) -> List[SearchResult]:
        with trace_request(parent.span_id, f"search.source.{source.name}", parent=parent):
            return await asyncio.to_thread(source.search, query, principal)

    def _settle(self, source: SearchSource, outcome) -> List[SearchResult]:
        """Apply the failure policy to one finished source."""
        if not isinstance(outcome, BaseException):
            return outcome

        increment(f"search.{source.name}.failures")
        if not isinstance(outcome, Exception):
            raise outcome
        if self.config.failure_policy == DEGRADE:
            logger.warning(f"[SEARCH] Source {source.name} failed, treating as empty: {type(outcome).__name__}: {outcome}")
            return []
        logger.error(f"[SEARCH] Source {source.name} failed: {type(outcome).__name__}: {outcome}")
        if isinstance(outcome, UpstreamError):
            raise outcome
        raise UpstreamError("Search failed", cause=outcome)

    async def search(self, raw_query: Optional[str], raw_scope: Optional[str] = None,
                     principal: Optional[Principal] = None) -> SearchResponse:
        """
        Validate the query and scope, then query every applicable source.

        Raises ValidationError before any source is touched, and UpstreamError
        when a source fails under the `abort` policy.
        """
        query = normalize_query(raw_query)
        scope = parse_scope(raw_scope)

        active = [s for s in self.sources if s.applies_to(scope, principal)]

        with trace_request(str(uuid.uuid4()), "search.aggregate", {"scope": scope.value}) as span:
            started = time.time()
            # Every source runs to completion before the policy is applied, so no
            # worker thread outlives the request (the users source holds its session)
            outcomes = await asyncio.gather(
                *(self._run_source(s, query, principal, span) for s in active),
                return_exceptions=True,
            )
            batches = [self._settle(s, outcome) for s, outcome in zip(active, outcomes)]

            results, total = merge_results(batches, self.config.max_results)

            metrics = {"search.duration": time.time() - started, "search.total": total}
            for source, batch in zip(active, batches):
                metrics[f"search.{source.name}.hits"] = len(batch)
            log_metrics(metrics)

        logger.info(f"[SEARCH] '{query}' scope={scope.value} sources={[s.name for s in active]} total={total}")
        return SearchResponse(success=True, query=query, results=results, total=total)
