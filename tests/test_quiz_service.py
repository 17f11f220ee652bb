import random
from unittest.mock import patch

import pytest

import db
import quiz
from engines.scoring import wilson_lower_bound
from engines.spaced_repetition import min_interval_ms, priority
from engines.windows import DAY_MS, HOUR_MS
from schemas import AttemptRecord

MINUTE = 60 * 1000


def _clue(number, direction="across", answer="CAT", pattern="___", **extra):
    return {"number": number, "direction": direction, "text": f"Clue {number}", "pattern": pattern, "answer": answer, **extra}


def _save(date, clues, marked_complete=False):
    quiz.save_puzzle({"puzzleDate": date, "clues": clues})
    if marked_complete:
        quiz.set_marked_complete(date, {"markedComplete": True})


def test_no_puzzles_at_all(temp_db, now_ms):
    with pytest.raises(quiz.NoPuzzles):
        quiz.get_next_clue(now_ms)


def test_no_completed_clues(temp_db, now_ms):
    _save("2024-01-01", [_clue(1, answer="CA"), _clue(2, ignored=True)])
    with pytest.raises(quiz.NoEligibleClues):
        quiz.get_next_clue(now_ms)


def test_marked_complete_puzzles_are_skipped_by_default(temp_db, now_ms):
    _save("2024-01-01", [_clue(1), _clue(2), _clue(3, direction="down")], marked_complete=True)
    _save("2024-01-02", [_clue(9, direction="down", answer="DOG")])

    for seed in range(10):
        result = quiz.get_next_clue(now_ms, rng=random.Random(seed))
        assert result["clue"]["puzzleDate"] == "2024-01-02"
        assert result["clue"]["clueId"] == "down-9"
        assert result["totalCompleted"] == 1
        assert result["spacedRepetition"]["priority"] == -1000
        assert result["spacedRepetition"]["timeSinceLastMs"] is None
        assert result["spacedRepetition"]["timeSinceLastMinutes"] is None


def test_marked_complete_puzzles_can_be_included(temp_db, now_ms):
    _save("2024-01-01", [_clue(1), _clue(2), _clue(3, direction="down")], marked_complete=True)
    _save("2024-01-02", [_clue(9, direction="down", answer="DOG")])

    result = quiz.get_next_clue(now_ms, include_marked_complete=True, rng=random.Random(0))
    assert result["totalCompleted"] == 4


def test_include_flag_defaults_from_environment(temp_db, now_ms, monkeypatch):
    _save("2024-01-01", [_clue(1)], marked_complete=True)
    monkeypatch.setenv("INCLUDE_MARKED_COMPLETE", "true")
    assert quiz.get_next_clue(now_ms)["clue"]["clueId"] == "across-1"


def test_single_clue_payload_matches_direct_computation(temp_db, now_ms):
    _save("2024-01-01", [_clue(5, answer="EMU")])
    last = now_ms - 3 * DAY_MS
    for offset, correct in ((0, True), (HOUR_MS, False), (2 * HOUR_MS, True)):
        db.append_attempt("2024-01-01", "across-5", AttemptRecord(timestamp=last - offset, correct=correct))

    result = quiz.get_next_clue(now_ms, rng=random.Random(3))

    wilson = wilson_lower_bound(2, 3)
    interval = min_interval_ms(wilson, 3)
    assert result["wilsonLower"] == pytest.approx(wilson)
    assert result["attempts"] == 3
    assert result["correct"] == 2
    sr = result["spacedRepetition"]
    assert sr["priority"] == pytest.approx(priority(wilson, 3, last, now_ms))
    assert sr["minIntervalMs"] == pytest.approx(interval)
    assert sr["minIntervalMinutes"] == round(interval / MINUTE)
    assert sr["timeSinceLastMs"] == 3 * DAY_MS
    assert sr["timeSinceLastMinutes"] == 3 * 24 * 60


def test_unseen_clue_beats_resting_ones(temp_db, now_ms):
    _save("2024-01-01", [_clue(1), _clue(2), _clue(3)])
    for clue_id in ("across-1", "across-2"):
        for _ in range(5):
            db.append_attempt("2024-01-01", clue_id, AttemptRecord(timestamp=now_ms, correct=True))

    class LowestDraw:
        def random(self):
            return 0.0

        def shuffle(self, items):
            pass

    assert quiz.get_next_clue(now_ms, rng=LowestDraw())["clue"]["clueId"] == "across-3"


def test_store_failure_aborts_selection(temp_db, now_ms):
    _save("2024-01-01", [_clue(1), _clue(2)])
    with patch("quiz.db.get_attempts", side_effect=db.StoreFailure("boom")):
        with pytest.raises(db.StoreFailure):
            quiz.get_next_clue(now_ms)


def test_concurrent_fetches_match_sequential(temp_db, now_ms, monkeypatch):
    _save("2024-01-01", [_clue(n) for n in range(1, 13)])
    for n in range(1, 13):
        for k in range(n % 4):
            db.append_attempt("2024-01-01", f"across-{n}", AttemptRecord(timestamp=now_ms - k * DAY_MS, correct=k % 2 == 0))

    sequential = quiz.get_performance_report(now_ms, rng=random.Random(5))
    monkeypatch.setenv("FETCH_CONCURRENCY", "4")
    concurrent = quiz.get_performance_report(now_ms, rng=random.Random(5))

    assert concurrent == sequential


def test_record_then_read_round_trip(temp_db, now_ms):
    before = quiz.get_clue_stats("across-1", "2024-01-01", now_ms)
    assert before.lifetime.total == 0
    assert before.lifetime.percent is None

    returned = quiz.record_attempt("across-1", "2024-01-01", True, now_ms)
    quiz.record_attempt("across-1", "2024-01-01", False, now_ms + 1)
    after = quiz.get_clue_stats("across-1", "2024-01-01", now_ms + 1)

    assert returned.lifetime.total == 1
    assert returned.last_hour.correct == 1
    assert after.lifetime.total == 2
    assert after.lifetime.correct == 1
    assert after.last_hour.total == 2
    assert after.last_week.percent == 50


@pytest.mark.parametrize(
    "clue_id,puzzle_date,correct",
    [("", "2024-01-01", True), ("across-1", None, True), ("across-1", "2024-01-01", "true"), ("across-1", "2024-01-01", None)],
)
def test_record_attempt_rejects_malformed_input(temp_db, clue_id, puzzle_date, correct):
    with pytest.raises(quiz.InvalidInput):
        quiz.record_attempt(clue_id, puzzle_date, correct)
    assert db.get_attempts("2024-01-01", "across-1") == []


def test_clue_stats_require_ids(temp_db):
    with pytest.raises(quiz.InvalidInput):
        quiz.get_clue_stats("", "2024-01-01")


def test_performance_report_orders_weakest_first(temp_db, now_ms):
    _save("2024-01-01", [_clue(1), _clue(2), _clue(3), _clue(4, answer="")])
    _save("2024-01-02", [_clue(7)], marked_complete=True)
    for _ in range(20):
        db.append_attempt("2024-01-01", "across-1", AttemptRecord(timestamp=now_ms - 2 * DAY_MS, correct=True))
    db.append_attempt("2024-01-01", "across-2", AttemptRecord(timestamp=now_ms - 30 * MINUTE, correct=False))
    db.append_attempt("2024-01-01", "across-2", AttemptRecord(timestamp=now_ms - 30 * MINUTE, correct=True))

    report = quiz.get_performance_report(now_ms, rng=random.Random(1))

    ids = [(entry["puzzleDate"], entry["clueId"]) for entry in report]
    assert set(ids[:2]) == {("2024-01-01", "across-3"), ("2024-01-02", "across-7")}
    assert ids[2:] == [("2024-01-01", "across-2"), ("2024-01-01", "across-1")]

    strong = report[3]["stats"]
    assert strong["total"] == 20
    assert strong["percent"] == 100
    assert strong["wilsonLower"] == round(wilson_lower_bound(20, 20), 3)
    assert strong["lastDay"] == {"total": 0, "correct": 0, "percent": None}
    assert strong["lastWeek"] == {"total": 20, "correct": 20, "percent": 100}
    assert report[2]["stats"]["lastHour"] == {"total": 2, "correct": 1, "percent": 50}


def test_performance_report_for_empty_store(temp_db, now_ms):
    assert quiz.get_performance_report(now_ms) == []


def test_puzzle_stats_average_per_clue_accuracy(temp_db, now_ms):
    _save("2024-01-01", [_clue(1), _clue(2), _clue(3, answer="C")])
    _save("2024-01-03", [_clue(1)], marked_complete=True)
    db.append_attempt("2024-01-01", "across-1", AttemptRecord(timestamp=now_ms - HOUR_MS, correct=True))
    db.append_attempt("2024-01-01", "across-2", AttemptRecord(timestamp=now_ms - HOUR_MS, correct=True))
    db.append_attempt("2024-01-01", "across-2", AttemptRecord(timestamp=now_ms - HOUR_MS, correct=False))
    db.append_attempt("2024-01-01", "across-2", AttemptRecord(timestamp=now_ms - 30 * DAY_MS, correct=True))

    stats = quiz.get_puzzle_stats(now_ms)

    assert [item["date"] for item in stats] == ["2024-01-03", "2024-01-01"]
    older = stats[1]
    assert (older["total"], older["complete"], older["incomplete"]) == (3, 2, 1)
    assert older["markedComplete"] is False
    # (1.0 + 0.5 + 0) / 3 clues
    assert older["weeklyQuizStats"] == {"total": 3, "correct": 2, "percent": 50}
    assert stats[0]["markedComplete"] is True
    assert stats[0]["weeklyQuizStats"] == {"total": 0, "correct": 0, "percent": 0}


def test_incomplete_clues_sorted_newest_first(temp_db):
    _save("2024-01-01", [_clue(3, answer=""), _clue(1, direction="down", answer="C"), _clue(2, answer="")])
    _save("2024-01-05", [_clue(10, answer=""), _clue(11, answer="", ignored=True), _clue(12)])

    clues = quiz.list_incomplete_clues()

    assert [(c["puzzleDate"], c["direction"], c["number"]) for c in clues] == [
        ("2024-01-05", "across", 10),
        ("2024-01-01", "across", 2),
        ("2024-01-01", "across", 3),
        ("2024-01-01", "down", 1),
    ]


def test_puzzle_listing_and_detail(temp_db, now_ms):
    _save("2024-01-01", [_clue(1), _clue(2, answer="")])
    _save("2024-01-02", [_clue(1)])
    db.append_attempt("2024-01-01", "across-1", AttemptRecord(timestamp=now_ms, correct=True))
    db.append_attempt("2024-01-01", "across-2", AttemptRecord(timestamp=now_ms, correct=True))

    listing = quiz.list_puzzles()
    assert listing["dates"] == ["2024-01-02", "2024-01-01"]
    assert listing["puzzles"][1] == {"date": "2024-01-01", "total": 2, "incomplete": 1}

    detail = quiz.get_puzzle_detail("2024-01-01")
    assert detail["puzzleDate"] == "2024-01-01"
    assert detail["clues"][0]["quizStats"] == {"correct": 1, "total": 1}
    assert detail["clues"][1]["quizStats"] is None

    with pytest.raises(quiz.PuzzleNotFound):
        quiz.get_puzzle_detail("1999-01-01")


def test_update_clue_validates_answer_length(temp_db):
    _save("2024-01-01", [_clue(1, answer="")])

    with pytest.raises(quiz.InvalidInput, match="Answer must be 3 characters"):
        quiz.update_clue("across-1", {"puzzleDate": "2024-01-01", "updates": {"answer": "CATS"}})

    updated = quiz.update_clue("across-1", {"puzzleDate": "2024-01-01", "updates": {"answer": "CAT", "ignored": True}})
    assert updated.answer == "CAT"
    stored = db.get_puzzle("2024-01-01")
    assert stored.clues[0].ignored is True
    assert stored.updated_at is not None


@pytest.mark.parametrize("answer", [123, ["C", "A", "T"], {"letters": "CAT"}])
def test_update_clue_rejects_non_string_answer(temp_db, answer):
    _save("2024-01-01", [_clue(1, answer="")])

    with pytest.raises(quiz.InvalidInput):
        quiz.update_clue("across-1", {"puzzleDate": "2024-01-01", "updates": {"answer": answer}})

    stored = db.get_puzzle("2024-01-01")
    assert stored.clues[0].answer == ""
    assert stored.updated_at is None


def test_parse_attempt_rejects_non_object_bodies():
    for payload in (None, [], [{"clueId": "across-1"}], "across-1"):
        with pytest.raises(quiz.InvalidInput, match="body must be a JSON object"):
            quiz.parse_attempt(payload)


def test_update_clue_reports_missing_targets(temp_db):
    _save("2024-01-01", [_clue(1)])
    with pytest.raises(quiz.ClueNotFound):
        quiz.update_clue("down-9", {"puzzleDate": "2024-01-01", "updates": {}})
    with pytest.raises(quiz.PuzzleNotFound):
        quiz.update_clue("across-1", {"puzzleDate": "1999-01-01", "updates": {}})
    with pytest.raises(quiz.InvalidInput):
        quiz.update_clue("across-1", {"updates": {}})


def test_delete_clue(temp_db):
    _save("2024-01-01", [_clue(1), _clue(2)])
    quiz.delete_clue("across-1", "2024-01-01")
    assert [c.clue_id for c in db.get_puzzle("2024-01-01").clues] == ["across-2"]
    with pytest.raises(quiz.InvalidInput):
        quiz.delete_clue("across-2", None)


def test_set_marked_complete_requires_boolean(temp_db):
    _save("2024-01-01", [_clue(1)])
    with pytest.raises(quiz.InvalidInput):
        quiz.set_marked_complete("2024-01-01", {"markedComplete": "yes"})
    assert quiz.set_marked_complete("2024-01-01", {"markedComplete": True}) is True
    assert db.get_puzzle("2024-01-01").marked_complete is True


def test_save_puzzle_rejects_missing_clues(temp_db):
    with pytest.raises(quiz.InvalidInput):
        quiz.save_puzzle({"puzzleDate": "2024-01-01"})
