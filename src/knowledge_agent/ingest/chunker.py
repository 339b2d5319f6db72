"""Token-bounded recursive text splitting with overlap."""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Protocol

from knowledge_agent.config import ChunkingConfig
from knowledge_agent.errors import InvalidConfiguration
from knowledge_agent.types import Segment

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)

# Ordered from most to least preferred split point.
_BOUNDARY_PATTERNS = (
    re.compile(r"\n\s*\n"),
    re.compile(r"(?<=[.!?。！？])\s+"),
    re.compile(r"\s+"),
)


class TokenCounter(Protocol):
    """Counts tokens; must be monotonic in text length for one tokenizer."""

    def count(self, text: str) -> int:
        """Return the token count of `text`."""


class RegexTokenCounter:
    """Counts word runs and individual punctuation marks as tokens."""

    def count(self, text: str) -> int:
        return len(_TOKEN_PATTERN.findall(text))

    @staticmethod
    def tokenize(text: str) -> list[str]:
        return _TOKEN_PATTERN.findall(text)


class SegmentSequence:
    """Lazy, restartable sequence of segments over one text.

    Each iteration recomputes the segments from scratch, so two passes over
    the same sequence yield identical results.
    """

    def __init__(
        self,
        text: str,
        max_tokens: int,
        overlap_tokens: int,
        token_counter: TokenCounter,
    ) -> None:
        self.text = text
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens
        self._counter = token_counter

    def __iter__(self) -> Iterator[Segment]:
        return self._generate()

    def _generate(self) -> Iterator[Segment]:
        text = self.text
        window_start = 0
        fresh_start = 0
        index = 0

        while fresh_start < len(text):
            end = self._find_end(window_start, fresh_start)
            if end == fresh_start and window_start < fresh_start:
                # No room for new content after the overlap; drop it.
                window_start = fresh_start
                end = self._find_end(window_start, fresh_start)
            if end == fresh_start:
                # Counter reports a single character above budget; force progress.
                end = fresh_start + 1

            window = text[window_start:end]
            yield Segment(
                index=index,
                text=window,
                start=window_start,
                end=end,
                fresh_start=fresh_start,
                token_count=self._counter.count(window),
            )
            index += 1

            next_window = self._overlap_start(window_start, end)
            window_start, fresh_start = next_window, end

    def _fits(self, start: int, end: int) -> bool:
        return self._counter.count(self.text[start:end]) <= self.max_tokens

    def _find_end(self, start: int, lower: int) -> int:
        """Return the preferred segment end in `[lower, len(text)]`."""

        limit = len(self.text)
        hard_end = self._max_fitting_end(start, lower)
        if hard_end >= limit:
            return limit
        if hard_end == lower:
            return lower

        for pattern in _BOUNDARY_PATTERNS:
            boundary = None
            for match in pattern.finditer(self.text, lower, hard_end):
                if match.end() > lower:
                    boundary = match.end()
            if boundary is not None:
                return boundary
        return hard_end

    def _max_fitting_end(self, start: int, lower: int) -> int:
        """Largest `end >= lower` with `count(text[start:end]) <= max_tokens`.

        Gallops forward from `lower` then binary-searches, so each call costs
        roughly one segment length of counting per probe instead of scanning
        the remainder of the document.
        """

        limit = len(self.text)
        good = lower
        step = max(1, self.max_tokens * 4)
        probe = min(limit, lower + step)
        while probe < limit and self._fits(start, probe):
            good = probe
            step *= 2
            probe = min(limit, lower + step)
        if probe >= limit and self._fits(start, limit):
            return limit

        bad = probe
        while bad - good > 1:
            mid = (good + bad) // 2
            if self._fits(start, mid):
                good = mid
            else:
                bad = mid
        return good

    def _overlap_start(self, start: int, end: int) -> int:
        """Start offset of the trailing `overlap_tokens` of `text[start:end]`."""

        if self.overlap_tokens == 0:
            return end
        text = self.text
        if self._counter.count(text[start:end]) <= self.overlap_tokens:
            return start

        too_far, ok = start, end
        while ok - too_far > 1:
            mid = (too_far + ok) // 2
            if self._counter.count(text[mid:end]) <= self.overlap_tokens:
                ok = mid
            else:
                too_far = mid

        # Never begin the overlap in the middle of a word.
        while ok < end and not text[ok - 1].isspace() and not text[ok].isspace():
            ok += 1
        while ok < end and text[ok].isspace():
            ok += 1
        return ok


def split_text(
    text: str,
    max_tokens: int,
    overlap_tokens: int,
    token_counter: TokenCounter,
) -> SegmentSequence:
    """Split `text` into overlapping segments of at most `max_tokens` tokens.

    Split points prefer paragraph breaks, then sentence ends, then whitespace,
    and fall back to a hard cut only when none fits in the budget. Each
    segment after the first begins with the last `overlap_tokens` tokens of
    its predecessor, or all of it when the predecessor is shorter.

    Raises:
        InvalidConfiguration: parameters are inconsistent. Raised immediately,
            not on first iteration.
    """

    if max_tokens < 1:
        raise InvalidConfiguration(f"max_tokens must be >= 1, got {max_tokens}")
    if overlap_tokens < 0:
        raise InvalidConfiguration(f"overlap_tokens must be >= 0, got {overlap_tokens}")
    if overlap_tokens >= max_tokens:
        raise InvalidConfiguration(
            f"overlap_tokens ({overlap_tokens}) must be less than max_tokens ({max_tokens})"
        )
    return SegmentSequence(text, max_tokens, overlap_tokens, token_counter)


class RecursiveTokenSplitter:
    """Config-bound splitter used by the ingest pipeline."""

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self.config = config or ChunkingConfig()
        self.token_counter = token_counter or RegexTokenCounter()
        if self.config.overlap_tokens >= self.config.max_tokens:
            raise InvalidConfiguration(
                f"overlap_tokens ({self.config.overlap_tokens}) must be less than "
                f"max_tokens ({self.config.max_tokens})"
            )

    def split(self, text: str) -> SegmentSequence:
        return split_text(
            text,
            self.config.max_tokens,
            self.config.overlap_tokens,
            self.token_counter,
        )
