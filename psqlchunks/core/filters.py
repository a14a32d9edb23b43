"""
Chunk filters.

Filters decide which chunks of a file are eligible to run. Every filter
fails closed: until ``set_params`` has succeeded it matches nothing.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from psqlchunks.models import Chunk

logger = logging.getLogger(__name__)

LINE_NUMBER_RE = re.compile(r"-?[0-9]+")


class Filter(ABC):
    """A predicate over chunks, configured from a parameter string."""

    @abstractmethod
    def set_params(self, params: Optional[str]) -> tuple[bool, str]:
        """
        Parse ``params`` into matcher state.

        Returns:
            (ok, error message). On failure the filter is left empty.
        """

    @abstractmethod
    def match(self, chunk: Chunk) -> bool:
        """Whether ``chunk`` passes this filter. Must not mutate anything."""


class LineFilter(Filter):
    """Matches chunks covering at least one of the given line numbers."""

    def __init__(self) -> None:
        self.linenumbers: tuple[int, ...] = ()

    def set_params(self, params: Optional[str]) -> tuple[bool, str]:
        self.linenumbers = ()
        numbers: list[int] = []

        params = (params or "").strip()
        if not params:
            return False, "No linenumbers given."

        for token in params.split(","):
            token = token.strip()
            if not LINE_NUMBER_RE.fullmatch(token):
                return False, f"Not a number: {token}"
            number = int(token)
            numbers.append(number)
            logger.debug(f"LineFilter: number = {number}")

        self.linenumbers = tuple(numbers)
        return True, ""

    def match(self, chunk: Chunk) -> bool:
        return any(
            chunk.start_line <= number <= chunk.end_line for number in self.linenumbers
        )


class RegexFilter(Filter):
    """
    Base for filters testing one text attribute of a chunk against a pattern.

    Patterns use Python ``re`` syntax and are searched for anywhere in the
    text (not anchored) and case sensitively. Use ``(?i)`` for a case
    insensitive match and ``^``/``$`` to anchor.
    """

    def __init__(self) -> None:
        self.pattern: Optional[re.Pattern[str]] = None

    def set_params(self, params: Optional[str]) -> tuple[bool, str]:
        self.pattern = None
        if not params:
            return False, "No regular expression given."
        try:
            self.pattern = re.compile(params, re.MULTILINE)
        except re.error as e:
            return False, f"Invalid regular expression {params!r}: {e}"
        return True, ""

    def match_string(self, text: str) -> bool:
        if self.pattern is None:
            return False
        return self.pattern.search(text) is not None

    @abstractmethod
    def target(self, chunk: Chunk) -> str:
        """The chunk text this filter looks at."""

    def match(self, chunk: Chunk) -> bool:
        return self.match_string(self.target(chunk))


class DescriptionRegexFilter(RegexFilter):
    """Matches on the chunk description."""

    def target(self, chunk: Chunk) -> str:
        return chunk.description


class ContentRegexFilter(RegexFilter):
    """Matches on the chunk SQL text."""

    def target(self, chunk: Chunk) -> str:
        return chunk.sql


class FilterChain:
    """Logical AND of filters. An empty chain matches every chunk."""

    def __init__(self, filters: Iterable[Filter] = ()) -> None:
        self.filters: list[Filter] = list(filters)

    def add_filter(self, chunk_filter: Filter) -> None:
        self.filters.append(chunk_filter)

    def match(self, chunk: Chunk) -> bool:
        return all(f.match(chunk) for f in self.filters)

    def select(self, chunks: Iterable[Chunk]) -> list[Chunk]:
        """The matching chunks, in their original order."""
        return [chunk for chunk in chunks if self.match(chunk)]

    def __len__(self) -> int:
        return len(self.filters)


def build_filter_chain(
    lines: Optional[str] = None,
    description: Optional[str] = None,
    sql: Optional[str] = None,
) -> tuple[FilterChain, list[str]]:
    """
    Build a chain from optional parameter strings.

    Returns:
        (chain, errors). Each error is prefixed with the filter it belongs
        to. Filters that failed to parse are still added, so the chain
        matches nothing.
    """
    chain = FilterChain()
    errors: list[str] = []
    specs: list[tuple[str, Optional[str], Filter]] = [
        ("lines", lines, LineFilter()),
        ("description", description, DescriptionRegexFilter()),
        ("sql", sql, ContentRegexFilter()),
    ]
    for name, params, chunk_filter in specs:
        if params is None:
            continue
        ok, errmsg = chunk_filter.set_params(params)
        if not ok:
            errors.append(f"{name} filter: {errmsg}")
        chain.add_filter(chunk_filter)
    return chain, errors
