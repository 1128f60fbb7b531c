from search import aggregator
from search import client
from search import schemas
from search import sources

from search.aggregator import (MAX_RESULTS, MIN_QUERY_LENGTH, SearchAggregator,
                               SearchConfig, merge_results, normalize_query,
                               parse_scope,)
from search.client import (DebouncedSearch, SearchClient,)
from search.schemas import (ResultKind, SearchResponse, SearchResult,
                            SearchScope,)
from search.sources import (FilesSource, PagesSource, SearchSource,
                            UsersSource,)

__all__ = ['DebouncedSearch', 'FilesSource', 'MAX_RESULTS', 'MIN_QUERY_LENGTH',
           'PagesSource', 'ResultKind', 'SearchAggregator', 'SearchClient',
           'SearchConfig', 'SearchResponse', 'SearchResult', 'SearchScope',
           'SearchSource', 'UsersSource', 'aggregator', 'client',
           'merge_results', 'normalize_query', 'parse_scope', 'schemas',
           'sources']
