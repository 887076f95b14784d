"""
Fuzzy matching used by the search cache and in-file search.

Scores follow the "0.0 is perfect, 1.0 is hopeless" convention:

    score = edits needed to find the query somewhere inside the text
            -------------------------------------------------------
                            length of the query

Matching is case-insensitive and location-independent. Substitutions,
insertions, deletions and adjacent transpositions each cost one edit.
A candidate matches when its best score is <= the index threshold.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar, Union

T = TypeVar("T")

KeyGetter = Union[str, Callable[[Any], Optional[str]]]


def substring_edit_distance(pattern: str, text: str, max_distance: Optional[int] = None) -> int:
    """Minimum edits turning pattern into any substring of text.

    Optimal-string-alignment distance with a free start and end in text
    (Sellers' algorithm). Returns max_distance + 1 as soon as every cell of
    a row exceeds max_distance.
    """
    m = len(pattern)
    n = len(text)
    if m == 0:
        return 0
    if n == 0:
        return m
    if pattern in text:
        return 0

    limit = m if max_distance is None else max_distance

    # Row i holds the cost of matching pattern[:i] ending at each text column.
    prev_prev: Optional[list[int]] = None
    prev = [0] * (n + 1)
    for i in range(1, m + 1):
        pc = pattern[i - 1]
        curr = [i] + [0] * n
        row_min = i
        for j in range(1, n + 1):
            tc = text[j - 1]
            cost = prev[j - 1] + (pc != tc)
            deletion = prev[j] + 1
            if deletion < cost:
                cost = deletion
            insertion = curr[j - 1] + 1
            if insertion < cost:
                cost = insertion
            if (
                prev_prev is not None
                and j > 1
                and pc == text[j - 2]
                and pattern[i - 2] == tc
            ):
                swap = prev_prev[j - 2] + 1
                if swap < cost:
                    cost = swap
            curr[j] = cost
            if cost < row_min:
                row_min = cost
        if row_min > limit:
            return limit + 1
        prev_prev, prev = prev, curr
    return min(prev)


def fuzzy_score(query: str, text: str, threshold: float) -> Optional[float]:
    """Score query against text, or None if it does not clear threshold.

    Both arguments are expected lower-cased already.
    """
    if not query or not text:
        return None
    if query in text:
        return 0.0
    max_errors = int(threshold * len(query))
    if max_errors == 0:
        return None

    # Each query character absent from text needs at least one edit.
    text_chars = set(text)
    missing = 0
    for ch in query:
        if ch not in text_chars:
            missing += 1
            if missing > max_errors:
                return None

    distance = substring_edit_distance(query, text, max_errors)
    if distance > max_errors:
        return None
    return distance / len(query)


@dataclass(frozen=True)
class FuzzyResult(Generic[T]):
    item: T
    score: float
    index: int


class FuzzyIndex(Generic[T]):
    """
    Immutable fuzzy index over a fixed item list.

    keys are dict keys (for dict items) or callables returning the text to
    match. An item's score is its best score across keys. Results are
    ordered by score, ties kept in item order.
    """

    def __init__(self, items: Sequence[T], keys: Sequence[KeyGetter], threshold: float):
        self.items = list(items)
        self.threshold = threshold
        self._texts: list[tuple[str, ...]] = [
            tuple(self._extract(item, key) for key in keys) for item in self.items
        ]

    @staticmethod
    def _extract(item: Any, key: KeyGetter) -> str:
        value = key(item) if callable(key) else item.get(key)
        return str(value).lower() if value is not None else ""

    def __len__(self) -> int:
        return len(self.items)

    def search(self, query: str, limit: Optional[int] = None) -> list[FuzzyResult[T]]:
        needle = (query or "").strip().lower()
        if not needle:
            return []

        hits: list[FuzzyResult[T]] = []
        for index, texts in enumerate(self._texts):
            best: Optional[float] = None
            for text in texts:
                score = fuzzy_score(needle, text, self.threshold)
                if score is not None and (best is None or score < best):
                    best = score
                    if best == 0.0:
                        break
            if best is not None:
                hits.append(FuzzyResult(self.items[index], best, index))

        hits.sort(key=lambda hit: (hit.score, hit.index))
        if limit is not None:
            return hits[:limit]
        return hits
