"""
Query engine: tree, search, suggestions and tag lookups.

Every query reads one SearchCache snapshot, taken at the start of the
call, so a concurrent rebuild never shows it a mix of old and new state.
"""

from typing import Callable, Iterable, Optional, Union

from filexplorer.errors import EntryNotFoundError, InvalidRequestError
from filexplorer.index.cache import SearchCache
from filexplorer.paths import ROOT, PathNormalizer

SEARCH_LIMIT = 50
SUGGESTION_LIMIT = 10
SUGGESTION_GROUP_LIMIT = 5
TAG_SEARCH_DEFAULT_LIMIT = 20
TAG_SEARCH_MAX_LIMIT = 100


def parse_tag_filters(raw: Union[str, Iterable[str], None]) -> list[tuple[str, str]]:
    """
    Parse "key:value" filters.

    Accepts a comma-separated string or a list of pieces. Each piece splits
    on its first colon; pieces without a key or a value are dropped.

        >>> parse_tag_filters(" lang:py , owner:me:you, broken, :x")
        [('lang', 'py'), ('owner', 'me:you')]
    """
    if not raw:
        return []
    pieces = raw.split(",") if isinstance(raw, str) else list(raw)
    filters = []
    for piece in pieces:
        trimmed = str(piece).strip()
        if not trimmed:
            continue
        key, sep, value = trimmed.partition(":")
        if not sep:
            continue
        key, value = key.strip(), value.strip()
        if key and value:
            filters.append((key, value))
    return filters


def _child_sort_key(node: dict) -> tuple:
    return (node["type"] != "directory", node["name"].casefold(), node["name"])


class QueryEngine:
    """
    Read-side operations over the current search cache.

    Args:
        snapshot: callable returning the current SearchCache
        root_name: display name of the watched root
    """

    def __init__(self, snapshot: Callable[[], SearchCache], root_name: str):
        self._snapshot = snapshot
        self.root_name = root_name

    def build_tree(self) -> Optional[dict]:
        """Nested tree from the root, or None when nothing is indexed."""
        cache = self._snapshot()
        if not cache.entries:
            return None

        nodes: dict[str, dict] = {}
        for entry in cache.entries:
            nodes[entry["path"]] = {
                "path": entry["path"],
                "name": self.root_name if entry["path"] == ROOT else entry["name"],
                "type": entry["type"],
                "size": entry["size"],
                "mtime": entry["mtime"],
                "extension": entry["extension"],
                "depth": entry["depth"],
                "git": cache.git_info(entry),
                "tags": cache.tags_for(entry["path"]),
                "children": [],
            }

        for entry in cache.entries:
            parent = nodes.get(entry["parent_path"]) if entry["parent_path"] else None
            if parent is not None:
                parent["children"].append(nodes[entry["path"]])

        for node in nodes.values():
            node["children"].sort(key=_child_sort_key)

        return nodes.get(ROOT)

    @staticmethod
    def _paths_matching(cache: SearchCache, filters: list[tuple[str, str]]) -> Optional[set[str]]:
        """Intersection of the path sets of every filter; None for no filters."""
        if not filters:
            return None
        result: Optional[set[str]] = None
        for key, value in filters:
            paths = {tag["path"] for tag in cache.tags if tag["key"] == key and tag["value"] == value}
            result = paths if result is None else result & paths
            if not result:
                return set()
        return result

    def search(
        self,
        query: Optional[str] = None,
        tags: Union[str, Iterable[str], None] = None,
    ) -> list[dict]:
        """
        Fuzzy + tag-filtered entry search, at most 50 results.

        With a query, fuzzy order is kept. Without one, entries come in index
        order (shallow first, then name).
        """
        cache = self._snapshot()
        filters = parse_tag_filters(tags)
        allowed = self._paths_matching(cache, filters)
        needle = (query or "").strip()

        if needle:
            results = []
            seen: set[str] = set()
            for hit in cache.entry_index.search(needle, limit=SEARCH_LIMIT):
                path = hit.item["path"]
                if allowed is not None and path not in allowed:
                    continue
                if path in seen:
                    continue
                seen.add(path)
                results.append(cache.decorate(hit.item))
            return results

        candidates = cache.entries
        if allowed is not None:
            candidates = [entry for entry in candidates if entry["path"] in allowed]
        return [cache.decorate(entry) for entry in list(candidates)[:SEARCH_LIMIT]]

    def suggest(self, query: Optional[str] = None) -> list[dict]:
        """Autocomplete suggestions for the search box."""
        cache = self._snapshot()
        text = (query or "").strip()

        if not text:
            return [
                {"type": "path", "value": entry["path"]}
                for entry in cache.entries
                if entry["type"] == "directory" and entry["path"] != ROOT
            ][:SUGGESTION_LIMIT]

        current = text.split()[-1]
        if ":" in current:
            key, _, partial = current.partition(":")
            partial_lower = partial.lower()
            return [
                {"type": "tag", "value": f"{key}:{value}"}
                for value in cache.values_by_key.get(key, ())
                if value.lower().startswith(partial_lower)
            ][:SUGGESTION_LIMIT]

        merged = [
            {"type": "path", "value": hit.item["path"]}
            for hit in cache.entry_index.search(current, limit=SUGGESTION_GROUP_LIMIT)
        ]
        merged.extend(
            {"type": "tag", "value": hit.item["pair"]}
            for hit in cache.tag_index.search(current, limit=SUGGESTION_GROUP_LIMIT)
        )
        current_lower = current.lower()
        merged.extend(
            [
                {"type": "tagKey", "value": f"{key}:"}
                for key in cache.values_by_key
                if key.lower().startswith(current_lower)
            ][:SUGGESTION_GROUP_LIMIT]
        )

        unique = []
        seen: set[tuple[str, str]] = set()
        for suggestion in merged:
            token = (suggestion["type"], suggestion["value"])
            if token not in seen:
                seen.add(token)
                unique.append(suggestion)
        return unique[:SUGGESTION_LIMIT]

    def list_tags(self, path: Optional[str] = None) -> list[dict]:
        """
        All tags, or those of one entry.

        Raises:
            EntryNotFoundError: path given but not indexed
        """
        cache = self._snapshot()
        if path is None or not PathNormalizer.clean(path):
            return [
                {"path": tag["path"], "key": tag["key"], "value": tag["value"]}
                for tag in cache.tags
            ]

        canonical = PathNormalizer.clean(path)
        if cache.get(canonical) is None:
            raise EntryNotFoundError(f"Entry not found: {canonical}")
        return [
            {"path": canonical, "key": tag["key"], "value": tag["value"]}
            for tag in cache.tags_for_path(canonical)
        ]

    def search_tags(self, query: Optional[str], limit: Optional[int] = None) -> list[dict]:
        """
        Fuzzy search over tags.

        Raises:
            InvalidRequestError: empty query
        """
        needle = (query or "").strip()
        if not needle:
            raise InvalidRequestError("Query parameter q is required")

        if limit is None:
            limit = TAG_SEARCH_DEFAULT_LIMIT
        limit = max(1, min(TAG_SEARCH_MAX_LIMIT, int(limit)))

        cache = self._snapshot()
        return [
            {
                "path": hit.item["path"],
                "key": hit.item["key"],
                "value": hit.item["value"],
                "pair": hit.item["pair"],
                "score": hit.score,
            }
            for hit in cache.tag_index.search(needle, limit=limit)
        ]

    def get_entry(self, path: Optional[str]) -> dict:
        """
        One entry with tags and git info.

        Raises:
            InvalidRequestError: missing path
            EntryNotFoundError: not indexed
        """
        canonical = PathNormalizer.clean(path)
        if not canonical:
            raise InvalidRequestError("Query parameter path is required")

        cache = self._snapshot()
        entry = cache.get(canonical)
        if entry is None:
            raise EntryNotFoundError(f"Entry not found: {canonical}")
        return cache.decorate(entry)

    def status_counts(self) -> dict[str, int]:
        cache = self._snapshot()
        return {
            "entryCount": len(cache.entries),
            "tagCount": len(cache.tags),
            "repositoryCount": len(cache.git_by_path),
        }
