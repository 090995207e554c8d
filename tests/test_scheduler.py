import pytest

from llm_kanji_sentences import scheduler
from llm_kanji_sentences.scheduler import HOUR_MS, DAY_MS, SRS_INTERVALS
from llm_kanji_sentences.structured import KanjiStatus, ReviewOutcome, TrackedKanji

from conftest import NOW


def test_interval_ladder_reference_values():
    assert SRS_INTERVALS == (
        4 * HOUR_MS, 8 * HOUR_MS, DAY_MS, 3 * DAY_MS, 7 * DAY_MS, 14 * DAY_MS, 30 * DAY_MS, 120 * DAY_MS,
    )
    assert scheduler.PENALTY_INTERVAL == HOUR_MS


def test_interval_monotonic_and_clamped():
    for level in range(len(SRS_INTERVALS) - 1):
        assert scheduler.interval_for_level(level) <= scheduler.interval_for_level(level + 1)
    top = SRS_INTERVALS[-1]
    for level in range(len(SRS_INTERVALS) - 1, 30):
        assert scheduler.interval_for_level(level) == top


@pytest.mark.parametrize("srs_level,streak", [(0, 0), (2, 1), (6, 6), (7, 7), (12, 3)])
def test_correct_review_invariant(make_kanji, srs_level, streak):
    kanji = make_kanji("水", srs_level=srs_level, correct_streak=streak)
    reviewed = scheduler.apply_review(kanji, ReviewOutcome.CORRECT, NOW)

    assert reviewed.srs_level == srs_level + 1
    assert reviewed.correct_streak == streak + 1
    index = min(srs_level + 1, len(SRS_INTERVALS) - 1)
    assert reviewed.next_review_at == NOW + SRS_INTERVALS[index]
    assert reviewed.last_reviewed_at == NOW


@pytest.mark.parametrize("srs_level,expected", [(0, 0), (1, 0), (2, 0), (5, 3), (9, 7)])
def test_incorrect_review_invariant(make_kanji, srs_level, expected):
    kanji = make_kanji("火", srs_level=srs_level, correct_streak=4)
    reviewed = scheduler.apply_review(kanji, ReviewOutcome.INCORRECT, NOW)

    assert reviewed.srs_level == expected
    assert reviewed.correct_streak == 0
    assert reviewed.next_review_at == NOW + SRS_INTERVALS[0] // 4
    assert reviewed.last_reviewed_at == NOW


def test_incorrect_on_level_one_clamps_to_zero(make_kanji):
    reviewed = scheduler.apply_review(make_kanji("木", srs_level=1, correct_streak=1), "incorrect", NOW)
    assert reviewed.srs_level == 0
    assert reviewed.correct_streak == 0


def test_review_leaves_input_untouched(make_kanji):
    kanji = make_kanji("金", srs_level=3)
    scheduler.apply_review(kanji, ReviewOutcome.CORRECT, NOW)
    assert kanji.srs_level == 3
    assert kanji.last_reviewed_at == 0


def test_review_keeps_next_review_after_last_review(make_kanji):
    kanji = make_kanji("土", srs_level=4)
    for outcome in [ReviewOutcome.CORRECT, ReviewOutcome.INCORRECT, ReviewOutcome.CORRECT]:
        kanji = scheduler.apply_review(kanji, outcome, NOW)
        assert kanji.next_review_at >= kanji.last_reviewed_at


def test_unknown_outcome_is_rejected(make_kanji):
    with pytest.raises(ValueError):
        scheduler.apply_review(make_kanji("日"), "maybe", NOW)


def test_usage_does_not_touch_scheduling(make_kanji):
    kanji = make_kanji("月", srs_level=2, correct_streak=2, used_count=4)
    used = scheduler.apply_usage(kanji, NOW)
    assert used.used_count == 5
    assert used.last_used_at == NOW
    assert (used.srs_level, used.correct_streak, used.next_review_at) == (2, 2, kanji.next_review_at)


def test_new_kanji_is_new_and_due_at_creation():
    kanji = TrackedKanji.new("猫", NOW)
    assert kanji.next_review_at == NOW
    assert scheduler.is_due(kanji, NOW)
    assert scheduler.classify(kanji, NOW) is KanjiStatus.NEW


def test_leech_scenario(make_kanji):
    kanji = make_kanji("犬", srs_level=2, correct_streak=1, next_review_at=NOW + 1000)
    assert scheduler.is_leech(kanji, NOW)
    assert scheduler.classify(kanji, NOW) is KanjiStatus.LEECH


def test_classification_precedence(make_kanji):
    assert scheduler.classify(make_kanji("a", srs_level=0, next_review_at=NOW - 1), NOW) is KanjiStatus.NEW
    # Due beats leech
    assert scheduler.classify(make_kanji("b", srs_level=2, correct_streak=0, next_review_at=NOW), NOW) is KanjiStatus.DUE
    assert scheduler.classify(make_kanji("c", srs_level=3, correct_streak=2), NOW) is KanjiStatus.LEARNING
    assert scheduler.classify(make_kanji("d", srs_level=4, correct_streak=0), NOW) is KanjiStatus.LEARNING
    assert scheduler.classify(make_kanji("e", srs_level=7, correct_streak=7), NOW) is KanjiStatus.MASTERED
    assert scheduler.classify(make_kanji("f", srs_level=9, next_review_at=NOW - 1), NOW) is KanjiStatus.DUE


def test_review_many_applies_once_and_reports_missing(make_kanji):
    library = [make_kanji("一", srs_level=1), make_kanji("二", srs_level=3), make_kanji("三")]
    updated, missing = scheduler.review_many(library, ["二", "一", "二", "九", "八"], ReviewOutcome.CORRECT, NOW)

    assert [k.character for k in updated] == ["一", "二", "三"]
    assert updated[0].srs_level == 2
    assert updated[1].srs_level == 4
    assert updated[2] is library[2]
    assert sorted(missing) == missing
    assert set(missing) == {"八", "九"}
    assert {k.last_reviewed_at for k in updated[:2]} == {NOW}


def test_use_many_counts_each_character_once(make_kanji):
    library = [make_kanji("山"), make_kanji("川")]
    updated, missing = scheduler.use_many(library, ["山", "山", "山"], NOW)
    assert updated[0].used_count == 1
    assert updated[1].used_count == 0
    assert missing == []


def test_status_counts(make_kanji):
    library = [
        make_kanji("a"),
        make_kanji("b", srs_level=1, next_review_at=NOW - 5),
        make_kanji("c", srs_level=8, correct_streak=8),
        make_kanji("d", srs_level=5, correct_streak=3),
    ]
    counts = scheduler.status_counts(library, NOW)
    assert counts == {"new": 1, "due": 1, "leech": 0, "learning": 1, "mastered": 1}
