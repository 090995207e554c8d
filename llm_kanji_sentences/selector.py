"""
Prompt selection: which kanji anchor the next sentence generation request.

The selection is built tier by tier into an OrderedSelection, so insertion
order is priority order:

  1. due      : next review has passed, weakest (lowest srs_level) first
  2. leech    : not due, fragile history, stalest review first
  3. learning : not due, not mastered, newest addition first
  4. stale    : only when tiers 1 to 3 yield nothing: least recently used first

Every sort is stable, so ties keep library order.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from . import scheduler
from .structured import TrackedKanji

logger = logging.getLogger(__name__)

PROMPT_KANJI_LIMIT = 10
MIN_JLPT_LEVEL = 1
MAX_JLPT_LEVEL = 5


class OrderedSelection:
    """Ordered set of kanji keyed by character with a hard size cap."""

    def __init__(self, limit: int = PROMPT_KANJI_LIMIT) -> None:
        self.limit = limit
        self._items: List[TrackedKanji] = []
        self._index: Dict[str, str] = {}

    def add(self, kanji: TrackedKanji, reason: str = "") -> bool:
        """Insert if absent and under the cap. Returns True when inserted."""
        if self.full or kanji.character in self._index:
            return False
        self._items.append(kanji)
        self._index[kanji.character] = reason
        return True

    def extend(self, kanji: Iterable[TrackedKanji], reason: str = "") -> int:
        added = 0
        for item in kanji:
            if self.full:
                break
            if self.add(item, reason):
                added += 1
        return added

    @property
    def full(self) -> bool:
        return len(self._items) >= self.limit

    @property
    def reasons(self) -> Dict[str, str]:
        return dict(self._index)

    def items(self) -> List[TrackedKanji]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[TrackedKanji]:
        return iter(list(self._items))

    def __contains__(self, character: object) -> bool:
        return character in self._index


@dataclass
class PromptSelection:
    kanji: List[TrackedKanji]
    target_level: Optional[int] = None
    reasons: Dict[str, str] = field(default_factory=dict)

    @property
    def characters(self) -> List[str]:
        return [k.character for k in self.kanji]

    def __bool__(self) -> bool:
        return bool(self.kanji)


def filter_candidates(kanji_list: Sequence[TrackedKanji], jlpt_filter: Optional[int] = None) -> List[TrackedKanji]:
    if jlpt_filter:
        return [k for k in kanji_list if k.jlpt_level == jlpt_filter]
    return list(kanji_list)


def estimate_target_level(candidates: Iterable[TrackedKanji]) -> Optional[int]:
    """Mean JLPT level of the ranked candidates, rounded half up and clamped to N1..N5.

    Unranked kanji are ignored. Returns None when nothing is ranked.
    """
    levels = [k.jlpt_level for k in candidates if k.jlpt_level]
    if not levels:
        return None
    mean = sum(levels) / len(levels)
    rounded = int(math.floor(mean + 0.5))
    return max(MIN_JLPT_LEVEL, min(MAX_JLPT_LEVEL, rounded))


def select_prompt_kanji(
    kanji_list: Sequence[TrackedKanji],
    now: int,
    jlpt_filter: Optional[int] = None,
    limit: int = PROMPT_KANJI_LIMIT,
    mastery_threshold: int = scheduler.MASTERY_THRESHOLD,
) -> PromptSelection:
    """Pick at most ``limit`` kanji to anchor a generation request.

    Returns an empty selection only when no kanji match ``jlpt_filter``.
    ``target_level`` is the filter itself when one is given, otherwise the
    estimate from the candidate pool.
    """
    candidates = filter_candidates(kanji_list, jlpt_filter)
    if not candidates:
        logger.debug("No candidates for jlpt_filter=%s", jlpt_filter)
        return PromptSelection(kanji=[], target_level=jlpt_filter or None)

    due = sorted(
        (k for k in candidates if k.next_review_at <= now),
        key=lambda k: k.srs_level,
    )
    leeches = sorted(
        (k for k in candidates if k.next_review_at > now and scheduler.is_leech(k, now)),
        key=lambda k: k.last_reviewed_at,
    )
    learning = sorted(
        (
            k for k in candidates
            if k.next_review_at > now
            and not scheduler.is_leech(k, now)
            and k.srs_level < mastery_threshold
        ),
        key=lambda k: k.added_at,
        reverse=True,
    )

    selection = OrderedSelection(limit)
    selection.extend(due, "due")
    selection.extend(leeches, "leech")
    selection.extend(learning, "learning")

    if len(selection) == 0:
        stalest = sorted(candidates, key=lambda k: k.last_used_at)
        selection.extend(stalest, "stale")

    if jlpt_filter:
        target_level: Optional[int] = jlpt_filter
    else:
        target_level = estimate_target_level(candidates)

    logger.debug(
        "Selected %d of %d candidates (due=%d leech=%d learning=%d), target level %s",
        len(selection), len(candidates), len(due), len(leeches), len(learning), target_level,
    )
    return PromptSelection(kanji=selection.items(), target_level=target_level, reasons=selection.reasons)
