"""
CordSearch Query — Structured Queries for Elasticsearch
=======================================================

IndexQuery collects full-text terms, exact filters, exclusions and a date
range and renders them into the Elasticsearch query DSL. It can be built in
code or parsed from a query string:

    quantum "neural network" year:2024 -prefix:10.1234 since:2024-01-01

    - bare words and quoted phrases: full-text match over the default fields
    - field:value                  : exact term filter
    - -word / -field:value         : exclusion
    - since:DATE / until:DATE      : date range on the date field

Sort describes result ordering; merge_buckets folds aggregation buckets
whose labels differ only in case.
"""

import shlex
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

# Full-text fields, title boosted over content
DEFAULT_FIELDS = ["title^2", "content"]
DEFAULT_DATE_FIELD = "date"

RANGE_OPERATORS = {"since": "gte", "until": "lte"}


def time_zone(timezone_offset: int) -> str:
    """
    Convert a browser-style timezone offset into an Elasticsearch time zone.

    The offset is given in minutes and is positive west of UTC (as returned
    by JavaScript's Date.getTimezoneOffset), so UTC+1 is -60.

    Args:
        timezone_offset: Offset in minutes

    Returns:
        Time zone string such as "+01:00"
    """
    minutes = -timezone_offset
    sign = "+" if minutes >= 0 else "-"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


class IndexQuery:
    """
    A query against one index, rendered lazily into the query DSL.

    Example:
        q = IndexQuery.parse("quantum year:2024 since:2024-01-01")
        dsl = q.to_dsl(timezone_offset=-60)

        q = IndexQuery.term("status", "open").exclude({"term": {"deleted": True}})
    """

    def __init__(
        self,
        fields: Optional[List[str]] = None,
        date_field: str = DEFAULT_DATE_FIELD
    ):
        self.fields = fields or list(DEFAULT_FIELDS)
        self.date_field = date_field
        self.must: List[Dict[str, Any]] = []
        self.filter: List[Dict[str, Any]] = []
        self.must_not: List[Dict[str, Any]] = []
        self.since: Optional[str] = None
        self.until: Optional[str] = None

    @classmethod
    def match_all(cls) -> "IndexQuery":
        return cls()

    @classmethod
    def term(cls, field: str, value: Any) -> "IndexQuery":
        return cls().restrict({"term": {field: value}})

    @classmethod
    def terms(cls, field: str, values: Iterable[Any]) -> "IndexQuery":
        return cls().restrict({"terms": {field: list(values)}})

    @classmethod
    def ids(cls, ids: Iterable[str]) -> "IndexQuery":
        return cls().restrict({"ids": {"values": list(ids)}})

    @classmethod
    def raw(cls, clause: Dict[str, Any]) -> "IndexQuery":
        q = cls()
        q.must.append(clause)
        return q

    @classmethod
    def parse(
        cls,
        text: str,
        fields: Optional[List[str]] = None,
        date_field: str = DEFAULT_DATE_FIELD
    ) -> "IndexQuery":
        """
        Parse a query string.

        Args:
            text: Query string (see module documentation for the syntax)
            fields: Full-text fields (default: title^2, content)
            date_field: Field used by since:/until:

        Returns:
            The parsed query
        """
        q = cls(fields=fields, date_field=date_field)
        try:
            tokens = shlex.split(text)
        except ValueError:
            # unbalanced quotes
            tokens = text.split()

        words: List[str] = []
        for token in tokens:
            negated = token.startswith("-") and len(token) > 1
            if negated:
                token = token[1:]
            field, sep, value = token.partition(":")
            if sep and field and value and " " not in field:
                if field in RANGE_OPERATORS and not negated:
                    q.between(**{field: value})
                elif negated:
                    q.exclude({"term": {field: value}})
                else:
                    q.restrict({"term": {field: value}})
            elif " " in token:
                phrase = q._match(token, phrase=True)
                if negated:
                    q.exclude(phrase)
                else:
                    q.must.append(phrase)
            elif negated:
                q.exclude(q._match(token))
            else:
                words.append(token)

        if words:
            q.must.append(q._match(" ".join(words)))
        return q

    def restrict(self, clause: Dict[str, Any]) -> "IndexQuery":
        """Add a non-scoring filter clause."""
        self.filter.append(clause)
        return self

    def exclude(self, clause: Dict[str, Any]) -> "IndexQuery":
        """Add an exclusion clause."""
        self.must_not.append(clause)
        return self

    def between(self, since: Optional[str] = None, until: Optional[str] = None) -> "IndexQuery":
        """Restrict the date field to a range (both ends inclusive). A None end is left as it is."""
        if since is not None:
            self.since = since
        if until is not None:
            self.until = until
        return self

    def _match(self, text: str, phrase: bool = False) -> Dict[str, Any]:
        match: Dict[str, Any] = {"query": text, "fields": self.fields}
        if phrase:
            match["type"] = "phrase"
        else:
            match["operator"] = "and"
        return {"multi_match": match}

    def to_dsl(self, timezone_offset: int = 0) -> Dict[str, Any]:
        """
        Render the query DSL.

        Args:
            timezone_offset: Browser-style offset in minutes, applied to since:/until:

        Returns:
            The "query" part of a search request
        """
        filters = list(self.filter)
        if self.since or self.until:
            date_range: Dict[str, Any] = {"time_zone": time_zone(timezone_offset)}
            if self.since:
                date_range["gte"] = self.since
            if self.until:
                date_range["lte"] = self.until
            filters.append({"range": {self.date_field: date_range}})

        if not (self.must or filters or self.must_not):
            return {"match_all": {}}

        body: Dict[str, Any] = {}
        if self.must:
            body["must"] = list(self.must)
        if filters:
            body["filter"] = filters
        if self.must_not:
            body["must_not"] = list(self.must_not)
        return {"bool": body}

    def __repr__(self) -> str:
        return f"IndexQuery({self.to_dsl()!r})"


QueryLike = Union[IndexQuery, Dict[str, Any], str, None]


def as_query_dsl(query: QueryLike, timezone_offset: int = 0) -> Dict[str, Any]:
    """
    Render any accepted query form into the query DSL.

    Args:
        query: IndexQuery, raw DSL dict, query string, or None (match all)
        timezone_offset: Applied to date ranges of IndexQuery and query strings

    Returns:
        Query DSL dict
    """
    if query is None:
        return {"match_all": {}}
    if isinstance(query, IndexQuery):
        return query.to_dsl(timezone_offset)
    if isinstance(query, str):
        return IndexQuery.parse(query).to_dsl(timezone_offset)
    return query


class Sort:
    """
    Result ordering as a list of (field, order) pairs.

    An empty Sort keeps relevance order.

    Example:
        Sort.parse("date:desc,title").to_dsl()
        # [{"date": {"order": "desc"}}, {"title": {"order": "asc"}}]
    """

    ORDERS = ("asc", "desc")

    def __init__(self, fields: Optional[List[Tuple[str, str]]] = None):
        self.fields: List[Tuple[str, str]] = []
        for name, order in fields or []:
            self.add(name, order)

    @classmethod
    def parse(cls, text: str) -> "Sort":
        sort = cls()
        for part in text.split(","):
            part = part.strip()
            if not part:
                continue
            name, _, order = part.partition(":")
            sort.add(name.strip(), order.strip() or "asc")
        return sort

    def add(self, name: str, order: str = "asc") -> "Sort":
        order = order.lower()
        if order not in self.ORDERS:
            raise ValueError(f"sort order must be one of {self.ORDERS}, got '{order}'")
        self.fields.append((name, order))
        return self

    def to_dsl(self) -> Optional[List[Dict[str, Any]]]:
        if not self.fields:
            return None
        return [{name: {"order": order}} for name, order in self.fields]

    def __bool__(self) -> bool:
        return bool(self.fields)


def merge_buckets(buckets: Iterable[Tuple[str, int]]) -> List[Tuple[str, int]]:
    """
    Merge aggregation buckets whose labels differ only in case.

    Labels are trimmed and blank labels dropped. Counts of labels that are
    equal after lowercasing are summed under the first label seen; the
    result keeps the order in which labels first appear.

    Args:
        buckets: (label, count) pairs in the cluster's bucket order

    Returns:
        Merged (label, count) pairs

    Example:
        merge_buckets([("Cat", 3), ("cat", 2), ("CAT", 1)])   # [("Cat", 6)]
    """
    merged: Dict[str, List[Any]] = {}
    for label, count in buckets:
        label = str(label).strip()
        if not label:
            continue
        folded = label.lower()
        if folded in merged:
            merged[folded][1] += count
        else:
            merged[folded] = [label, count]
    return [(label, count) for label, count in merged.values()]
