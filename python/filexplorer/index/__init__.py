"""
Live index: mutation pipeline, search cache and queries.

    from filexplorer.index import IndexService, QueryEngine
"""

from filexplorer.index.cache import SearchCache
from filexplorer.index.query import QueryEngine, parse_tag_filters
from filexplorer.index.service import IndexService

__all__ = ["IndexService", "QueryEngine", "SearchCache", "parse_tag_filters"]
