import dataclasses
import time
from typing import Dict, Iterable, List, Sequence, Tuple

from .structured import KanjiStatus, ReviewOutcome, TrackedKanji

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

# Interval ladder indexed by srs_level, in milliseconds
SRS_INTERVALS: Tuple[int, ...] = (
    4 * HOUR_MS,      # 4 hours
    8 * HOUR_MS,      # 8 hours
    DAY_MS,           # 1 day
    3 * DAY_MS,       # 3 days
    7 * DAY_MS,       # 1 week
    14 * DAY_MS,      # 2 weeks
    30 * DAY_MS,      # 1 month
    120 * DAY_MS,     # 4 months
)

# Cooldown after a failed review, independent of the new level (1 hour)
PENALTY_INTERVAL = SRS_INTERVALS[0] // 4

MASTERY_THRESHOLD = 7
LEECH_MAX_SRS_LEVEL = 3
LEECH_MAX_STREAK = 1


def now_ms() -> int:
    """Wall clock in epoch milliseconds. Only call this at the boundary."""
    return int(time.time() * 1000)


def interval_for_level(srs_level: int, intervals: Sequence[int] = SRS_INTERVALS) -> int:
    """Interval for a level, clamped to the last rung of the ladder."""
    index = max(0, min(srs_level, len(intervals) - 1))
    return intervals[index]


def apply_review(
    kanji: TrackedKanji,
    outcome: ReviewOutcome,
    now: int,
    intervals: Sequence[int] = SRS_INTERVALS,
) -> TrackedKanji:
    """
    Compute the state of a kanji after one review.

    correct  : srs_level + 1, streak + 1, next review after the interval for
                the new level (clamped to the ladder)
    incorrect: srs_level - 2 (never below 0), streak reset, next review after
                a fixed quarter of the first interval

    Returns a new TrackedKanji; the input is left untouched.
    """
    outcome = ReviewOutcome(outcome)
    if outcome is ReviewOutcome.CORRECT:
        srs_level = kanji.srs_level + 1
        correct_streak = kanji.correct_streak + 1
        interval = interval_for_level(srs_level, intervals)
    else:
        srs_level = max(0, kanji.srs_level - 2)
        correct_streak = 0
        interval = intervals[0] // 4

    return dataclasses.replace(
        kanji,
        srs_level=srs_level,
        correct_streak=correct_streak,
        last_reviewed_at=now,
        next_review_at=now + interval,
    )


def apply_usage(kanji: TrackedKanji, now: int) -> TrackedKanji:
    """Record that a kanji appeared in a sentence the user was shown."""
    return dataclasses.replace(kanji, used_count=kanji.used_count + 1, last_used_at=now)


def is_due(kanji: TrackedKanji, now: int) -> bool:
    return now >= kanji.next_review_at


def is_leech(
    kanji: TrackedKanji,
    now: int,
    max_srs_level: int = LEECH_MAX_SRS_LEVEL,
    max_streak: int = LEECH_MAX_STREAK,
) -> bool:
    """Not yet due, but reviewed at a low level without a streak to show for it."""
    return (
        kanji.next_review_at > now
        and 0 < kanji.srs_level <= max_srs_level
        and kanji.correct_streak <= max_streak
    )


def classify(kanji: TrackedKanji, now: int, mastery_threshold: int = MASTERY_THRESHOLD) -> KanjiStatus:
    """Bucket a kanji for display and selection. First match wins:
    new, due, leech, learning, mastered."""
    if kanji.srs_level == 0:
        return KanjiStatus.NEW
    if is_due(kanji, now):
        return KanjiStatus.DUE
    if is_leech(kanji, now):
        return KanjiStatus.LEECH
    if kanji.srs_level < mastery_threshold:
        return KanjiStatus.LEARNING
    return KanjiStatus.MASTERED


def review_many(
    kanji_list: Sequence[TrackedKanji],
    characters: Iterable[str],
    outcome: ReviewOutcome,
    now: int,
) -> Tuple[List[TrackedKanji], List[str]]:
    """Apply one review outcome to every listed character with a single timestamp.

    Returns the new list (same order) and the characters that were not found.
    """
    targets = set(characters)
    known = {k.character for k in kanji_list}
    missing = sorted(targets - known)
    updated = [apply_review(k, outcome, now) if k.character in targets else k for k in kanji_list]
    return updated, missing


def use_many(
    kanji_list: Sequence[TrackedKanji],
    characters: Iterable[str],
    now: int,
) -> Tuple[List[TrackedKanji], List[str]]:
    """Usage increment for each listed character, once per character."""
    targets = set(characters)
    known = {k.character for k in kanji_list}
    missing = sorted(targets - known)
    updated = [apply_usage(k, now) if k.character in targets else k for k in kanji_list]
    return updated, missing


def status_counts(kanji_list: Iterable[TrackedKanji], now: int) -> Dict[str, int]:
    counts = {status.value: 0 for status in KanjiStatus}
    for kanji in kanji_list:
        counts[classify(kanji, now).value] += 1
    return counts
