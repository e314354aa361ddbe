"""
Response Normalizer

Turns an LLM reply into a list of ideas. Model output is often only
semi-structured, so parsing degrades through three strategies and never
fails:

1. the whole reply is a JSON array
2. a JSON array embedded in prose (first '[' to last ']')
3. one idea per non-blank line
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from schemas.idea_schema import Idea, NormalizationTier, DEFAULT_CONFIDENCE

logger = logging.getLogger(__name__)

Extractor = Tuple[str, Callable[[Mapping[str, Any]], Optional[str]]]


def field_extractor(key: str) -> Extractor:
    """
    Build a named extractor reading one key of a mapping.

    Missing, null, nested and blank values count as absent, so the next
    extractor in the chain is tried.
    """
    def extract(item: Mapping[str, Any]) -> Optional[str]:
        value = item.get(key)
        if value is None or isinstance(value, (dict, list)):
            return None
        text = value if isinstance(value, str) else str(value)
        return text if text.strip() else None
    return key, extract


# Tried in order; the first extractor returning a value wins
DEFAULT_EXTRACTORS: List[Extractor] = [
    field_extractor("idea"),
    field_extractor("content"),
    field_extractor("text"),
    field_extractor("description"),
]


class ResponseNormalizer:
    """
    Normalizes raw LLM text into Idea objects.

    Confidence is always the default (0.7); models are not asked for one.
    """

    def __init__(
        self,
        extractors: Optional[Sequence[Extractor]] = None,
        confidence: float = DEFAULT_CONFIDENCE,
    ):
        self.extractors = list(extractors) if extractors is not None else list(DEFAULT_EXTRACTORS)
        self.confidence = confidence

    def normalize(self, raw_text: str, requested_count: int = 0) -> List[Idea]:
        """Parse raw LLM text into ideas (never raises)"""
        ideas, _ = self.normalize_with_tier(raw_text, requested_count)
        return ideas

    def normalize_with_tier(self, raw_text: str, requested_count: int = 0) -> Tuple[List[Idea], NormalizationTier]:
        """Same as normalize(), also reporting which strategy succeeded"""
        text = raw_text if isinstance(raw_text, str) else ""

        ideas = self._parse_array(text)
        tier = NormalizationTier.JSON_ARRAY

        if ideas is None:
            start = text.find("[")
            end = text.rfind("]")
            if start >= 0 and end > start:
                ideas = self._parse_array(text[start:end + 1])
                tier = NormalizationTier.EMBEDDED_ARRAY

        if ideas is None:
            ideas = self._split_lines(text)
            tier = NormalizationTier.LINES

        logger.debug(f"Normalized LLM reply via tier {tier.value}: {len(ideas)} ideas")
        if requested_count and len(ideas) != requested_count:
            logger.info(f"Requested {requested_count} ideas, model returned {len(ideas)}")

        return ideas, tier

    # ==================== Strategies ====================

    def _parse_array(self, text: str) -> Optional[List[Idea]]:
        """Return ideas if text is a JSON array of objects/strings, else None"""
        try:
            data = json.loads(text)
        except (ValueError, TypeError, RecursionError):
            # RecursionError: pathologically nested brackets
            return None

        if not isinstance(data, list):
            return None

        ideas: List[Idea] = []
        for item in data:
            if isinstance(item, str):
                content: Optional[str] = item
            elif isinstance(item, Mapping):
                content = self._extract(item)
            else:
                return None

            if content is None or not content.strip():
                continue
            ideas.append(Idea(content=content.strip(), confidence=self.confidence))

        return ideas

    def _extract(self, item: Mapping[str, Any]) -> Optional[str]:
        for name, extract in self.extractors:
            value = extract(item)
            if value is not None:
                return value
        return None

    def _split_lines(self, text: str) -> List[Idea]:
        return [
            Idea(content=line.strip(), confidence=self.confidence)
            for line in text.splitlines()
            if line.strip()
        ]
