from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from exam_engine.core.errors import BusinessRuleError, ForbiddenError, ValidationError
from exam_engine.models.orm import AssignmentStatus, ExamAssignment, ExamAttempt, ExamAttemptAnswer, OptionLabel
from exam_engine.services import assignments, grader, question_store
from exam_engine.services.grader import SubmittedAnswer

TENANT = "acme"
NOW = datetime(2026, 3, 2, 9, 0, 0)


def _wrong(letter):
    return "B" if letter == "A" else "A"


def _answers(key, n_correct):
    """Answer every question, the first ``n_correct`` of them correctly."""
    out = []
    for i, (qid, letter) in enumerate(key.items()):
        out.append(SubmittedAnswer(qid, letter if i < n_correct else _wrong(letter)))
    return out


def _submit(db, aid, exam_id, answers, employee="e1", **kw):
    kw.setdefault("now", NOW)
    return grader.submit_attempt(db, TENANT, employee, aid, exam_id, answers, **kw)


def _row(db, aid):
    db.expire_all()
    return db.get(ExamAssignment, aid)


@pytest.mark.parametrize("correct, total, expected", [
    (7, 10, 70), (1, 3, 33), (2, 3, 67), (1, 2, 50), (1, 8, 13), (0, 5, 0), (5, 5, 100), (0, 0, 0),
])
def test_percentage_rounds_half_up(correct, total, expected):
    assert grader.percentage_of(correct, total) == expected


@pytest.mark.parametrize("elapsed, minutes, expected", [
    (None, 10, 600), (-5, 10, 0), (125, 10, 125), (9999, 10, 600), (None, 0, 60),
])
def test_duration_is_clamped(elapsed, minutes, expected):
    assert grader.clamp_duration_seconds(elapsed, minutes) == expected


def test_end_to_end_two_attempts(db, seed_topic, make_exam, make_assignment, answer_key):
    a, _ = seed_topic("Topic A", 3)
    b, _ = seed_topic("Topic B", 2)
    exam_id = make_exam([(a, 3), (b, 2)])
    aid = make_assignment(exam_id, max_attempts=2)
    assignments.start_assignment(db, aid, TENANT, "e1", now=NOW)
    key = answer_key(exam_id)

    result = _submit(db, aid, exam_id, _answers(key, 3), elapsed_seconds=300)
    assert (result.correct_answers, result.total_questions, result.percentage) == (3, 5, 60)
    assert (result.attempt_number, result.attempts_used, result.attempts_remaining) == (1, 1, 1)
    assert result.passed is True
    assert result.duration_seconds == 300

    second = _submit(db, aid, exam_id, _answers(key, 5))
    assert (second.attempt_number, second.attempts_remaining, second.percentage) == (2, 0, 100)

    with pytest.raises(BusinessRuleError) as err:
        _submit(db, aid, exam_id, _answers(key, 5))
    assert err.value.message == "No attempts remaining (max 2)"
    assert _row(db, aid).attempts_used == 2
    assert db.scalar(select(func.count(ExamAttempt.id))) == 2


def test_failed_attempt_keeps_in_progress(db, seed_topic, make_exam, make_assignment, answer_key):
    t, _ = seed_topic("Topic A", 4)
    exam_id = make_exam([(t, 4)], passing=75)
    aid = make_assignment(exam_id, max_attempts=3)
    assignments.start_assignment(db, aid, TENANT, "e1", now=NOW)
    key = answer_key(exam_id)

    result = _submit(db, aid, exam_id, _answers(key, 2))
    assert (result.percentage, result.passed) == (50, False)
    assert _row(db, aid).status == AssignmentStatus.IN_PROGRESS

    result = _submit(db, aid, exam_id, _answers(key, 3))
    assert result.passed is True
    assert _row(db, aid).status == AssignmentStatus.COMPLETED

    # a later failing attempt never undoes COMPLETED
    result = _submit(db, aid, exam_id, _answers(key, 0))
    assert result.passed is False
    row = _row(db, aid)
    assert (row.status, row.attempts_used) == (AssignmentStatus.COMPLETED, 3)


def test_unanswered_questions_count_as_wrong(db, seed_topic, make_exam, make_assignment, answer_key):
    t, _ = seed_topic("Topic A", 4)
    exam_id = make_exam([(t, 4)])
    aid = make_assignment(exam_id)
    key = answer_key(exam_id)
    first_qid = next(iter(key))

    result = _submit(db, aid, exam_id, [SubmittedAnswer(first_qid, key[first_qid].lower())])
    assert (result.correct_answers, result.percentage, result.passed) == (1, 25, True)

    rows = list(db.scalars(
        select(ExamAttemptAnswer).where(ExamAttemptAnswer.attempt_id == result.attempt_id)
        .order_by(ExamAttemptAnswer.position)
    ))
    assert [r.question_id for r in rows] == list(key)
    assert [r.position for r in rows] == [1, 2, 3, 4]
    assert rows[0].is_correct is True
    assert all(r.selected is None and r.is_correct is False for r in rows[1:])


def test_grading_follows_canonical_order_not_submission_order(db, seed_topic, make_exam, make_assignment, answer_key):
    t, _ = seed_topic("Topic A", 5)
    exam_id = make_exam([(t, 5)])
    aid = make_assignment(exam_id)
    key = answer_key(exam_id)
    answers = list(reversed(_answers(key, 5)))
    assert _submit(db, aid, exam_id, answers).correct_answers == 5


@pytest.mark.parametrize("mutate, message", [
    (lambda key, qid: [SubmittedAnswer(99999, "A")], "Answer includes non-exam question: 99999"),
    (lambda key, qid: [SubmittedAnswer(qid, "A"), SubmittedAnswer(qid, "B")], "Duplicate answer for question"),
    (lambda key, qid: [SubmittedAnswer(qid, "E")], "Invalid option: E"),
    (lambda key, qid: [SubmittedAnswer(qid, "")], "Invalid option"),
])
def test_invalid_answers_write_nothing(db, seed_topic, make_exam, make_assignment, answer_key, mutate, message):
    t, _ = seed_topic("Topic A", 3)
    exam_id = make_exam([(t, 3)])
    aid = make_assignment(exam_id)
    key = answer_key(exam_id)

    with pytest.raises(ValidationError) as err:
        _submit(db, aid, exam_id, mutate(key, next(iter(key))))
    assert err.value.message.startswith(message)
    assert _row(db, aid).attempts_used == 0
    assert db.scalar(select(func.count(ExamAttempt.id))) == 0


def test_exam_must_match_assignment(db, seed_topic, make_exam, make_assignment):
    t, _ = seed_topic("Topic A", 4)
    exam_id = make_exam([(t, 2)])
    other_exam = make_exam([(t, 2)])
    aid = make_assignment(exam_id)
    with pytest.raises(ValidationError):
        _submit(db, aid, other_exam, [])


def test_window_is_enforced(db, seed_topic, make_exam, make_assignment):
    t, _ = seed_topic("Topic A", 2)
    exam_id = make_exam([(t, 2)])
    closed = make_assignment(exam_id, employee="e1", end_time=NOW - timedelta(minutes=1))
    pending = make_assignment(exam_id, employee="e2", start_time=NOW + timedelta(minutes=1))

    with pytest.raises(BusinessRuleError) as err:
        _submit(db, closed, exam_id, [], employee="e1")
    assert err.value.message == "Assignment window ended"
    with pytest.raises(BusinessRuleError) as err:
        _submit(db, pending, exam_id, [], employee="e2")
    assert err.value.message == "Assignment window not started"


def test_revoked_and_foreign_assignments(db, seed_topic, make_exam, make_assignment):
    t, _ = seed_topic("Topic A", 2)
    exam_id = make_exam([(t, 2)])
    aid = make_assignment(exam_id)

    with pytest.raises(ForbiddenError):
        _submit(db, aid, exam_id, [], employee="e2")

    db.get(ExamAssignment, aid).status = AssignmentStatus.REVOKED
    db.commit()
    with pytest.raises(BusinessRuleError) as err:
        _submit(db, aid, exam_id, [])
    assert err.value.message == "Assignment revoked"


def test_soft_deleted_question_still_grades(db, seed_topic, make_exam, make_assignment, answer_key):
    t, ids = seed_topic("Topic A", 2)
    exam_id = make_exam([(t, 2)])
    aid = make_assignment(exam_id)
    key = answer_key(exam_id)
    question_store.deactivate_question(db, TENANT, ids[0])

    result = _submit(db, aid, exam_id, _answers(key, 2))
    assert (result.total_questions, result.correct_answers) == (2, 2)


def test_stale_attempt_claim_loses(db, seed_topic, make_exam, make_assignment, answer_key):
    t, _ = seed_topic("Topic A", 2)
    exam_id = make_exam([(t, 2)])
    aid = make_assignment(exam_id, max_attempts=2)
    _submit(db, aid, exam_id, _answers(answer_key(exam_id), 2))

    # a concurrent submission that read attempts_used == 0 must not go through
    a = _row(db, aid)
    with pytest.raises(BusinessRuleError) as err:
        grader._claim_attempt(db, a, expected_used=0, passed=True, now=NOW)
    assert err.value.message == "No attempts remaining"
    db.rollback()
    assert _row(db, aid).attempts_used == 1


def test_attempt_history_newest_first(db, seed_topic, make_exam, make_assignment, answer_key):
    t, _ = seed_topic("Topic A", 2)
    exam_id = make_exam([(t, 2)])
    aid = make_assignment(exam_id, max_attempts=2)
    key = answer_key(exam_id)
    _submit(db, aid, exam_id, _answers(key, 0), now=NOW)
    _submit(db, aid, exam_id, _answers(key, 2), now=NOW + timedelta(minutes=10))

    history = grader.list_attempts_for_employee(db, TENANT, "e1")
    assert [h.attempt_number for h in history] == [2, 1]
    assert [h.percentage for h in history] == [100, 0]
    assert grader.list_attempts_for_employee(db, TENANT, "e2") == []

    view = assignments.list_for_employee(db, TENANT, "e1", now=NOW)[0]
    assert (view.last_result, view.last_percentage, view.attempts_remaining) == ("PASSED", 100, 0)


def test_validate_answers_normalizes_letters():
    selected = grader.validate_answers([SubmittedAnswer(1, " c"), SubmittedAnswer(2, "D")], {1, 2, 3})
    assert selected == {1: OptionLabel.C, 2: OptionLabel.D}
