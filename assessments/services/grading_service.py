"""
Grading Service

Scores exam responses. Auto-gradable questions (multiple-choice, true-false,
text with acceptable answers) are scored immediately on submission by exact
comparison: full points on a match, zero otherwise, never partial credit.
Everything else waits for an instructor's manual score.

After any change to a response's scores the totals are recomputed by one
explicit function, ``recompute_totals``:

- total_score = sum of the per-question scores
- percentage = round(total_score / max_score * 100, 2), within [0, 100]
- passed = percentage >= exam.pass_percentage
- graded = every question has a score; SUBMITTED becomes GRADED then

A question whose answer key cannot be evaluated does not fail the request:
it scores zero and the response is flagged for review.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from ..exceptions import (
    ExamEngineError,
    InvalidScoreError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..models import (
    ExamQuestion,
    ExamResponse,
    FlagPriority,
    QuestionType,
    ResponseStatus,
)

logger = logging.getLogger(__name__)

TRUE_VALUES = frozenset({"true", "t", "yes", "y", "1"})
FALSE_VALUES = frozenset({"false", "f", "no", "n", "0"})

BATCH_SCORE = "score"
BATCH_FEEDBACK = "feedback"
BATCH_FLAG = "flag"
BATCH_OPERATION_KINDS = (BATCH_SCORE, BATCH_FEEDBACK, BATCH_FLAG)


class MalformedQuestionError(Exception):
    """Answer key of an auto-gradable question cannot be evaluated."""


def parse_bool(value: Any) -> Optional[bool]:
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return None


def _correct_option_index(question: ExamQuestion) -> int:
    options = [str(option).strip() for option in (question.options or [])]
    if not options:
        raise MalformedQuestionError("multiple choice question has no options")

    index = question.correct_answer_index
    if index is not None:
        if 0 <= index < len(options):
            return index
        raise MalformedQuestionError(f"correct answer index {index} is out of range")

    correct = str(question.correct_answer or "").strip()
    if correct in options:
        return options.index(correct)
    if correct.isdigit() and int(correct) < len(options):
        return int(correct)
    raise MalformedQuestionError("multiple choice question has no correct answer")


def _answer_option_index(question: ExamQuestion, answer: str) -> Optional[int]:
    # Option text wins over a numeric index so options like "1", "2" grade as text.
    options = [str(option).strip() for option in (question.options or [])]
    if answer in options:
        return options.index(answer)
    try:
        return int(answer)
    except ValueError:
        return None


def grade_question(question: ExamQuestion, answer: Optional[str]) -> int:
    """
    Deterministic score of one answer to one auto-gradable question.

    Args:
        question: The question, must satisfy ``can_auto_grade``
        answer: Raw answer string as saved on the response

    Returns:
        ``question.points`` on a match, otherwise 0

    Raises:
        MalformedQuestionError: The answer key cannot be evaluated
    """
    answer = "" if answer is None else str(answer).strip()

    if question.question_type == QuestionType.MULTIPLE_CHOICE:
        correct_index = _correct_option_index(question)
        if not answer:
            return 0
        return question.points if _answer_option_index(question, answer) == correct_index else 0

    if question.question_type == QuestionType.TRUE_FALSE:
        correct = parse_bool(question.correct_answer) if question.correct_answer is not None else None
        if correct is None:
            raise MalformedQuestionError("true/false question has no valid correct answer")
        if not answer:
            return 0
        return question.points if parse_bool(answer) == correct else 0

    if question.question_type == QuestionType.TEXT:
        acceptable = [str(a).strip() for a in (question.acceptable_answers or []) if str(a).strip()]
        if not acceptable:
            raise MalformedQuestionError("text question has no acceptable answers")
        if not answer:
            return 0
        if not question.case_sensitive:
            answer = answer.lower()
            acceptable = [a.lower() for a in acceptable]
        return question.points if answer in acceptable else 0

    raise MalformedQuestionError(f"question type {question.question_type} cannot be auto-graded")


def recompute_totals(
    response: ExamResponse,
    questions: Sequence[ExamQuestion],
    pass_percentage: float,
    now=None,
) -> ExamResponse:
    """Recomputes score totals and grading state of a response in place."""
    keys = [question.key for question in questions]
    scores = response.question_scores or {}

    response.total_score = sum(int(scores[key]) for key in keys if key in scores)
    if response.max_score > 0:
        percentage = round(response.total_score / response.max_score * 100, 2)
        response.percentage = min(100.0, max(0.0, percentage))
    else:
        response.percentage = 0.0
    response.passed = response.percentage >= pass_percentage
    response.graded = bool(keys) and all(key in scores for key in keys)

    if response.graded and response.status == ResponseStatus.SUBMITTED:
        response.status = ResponseStatus.GRADED
        response.graded_at = response.graded_at or now or timezone.now()
    return response


@dataclass
class BatchGradeOperation:
    """One operation applied uniformly to every response of a batch."""

    kind: str
    question_id: Optional[str] = None
    score: Optional[int] = None
    feedback: Optional[str] = None
    reason: str = ""
    priority: str = FlagPriority.MEDIUM

    def validate(self) -> None:
        violations = []
        if self.kind not in BATCH_OPERATION_KINDS:
            violations.append(f"unknown batch operation {self.kind!r}")
        if self.kind == BATCH_SCORE:
            if not self.question_id:
                violations.append("question_id is required for score operations")
            if self.score is None:
                violations.append("score is required for score operations")
        if self.kind == BATCH_FEEDBACK and not (self.feedback or "").strip():
            violations.append("feedback is required for feedback operations")
        if violations:
            raise ValidationError(violations, "Invalid batch operation")


@dataclass
class BatchGradeResult:
    """Outcome of a batch: successes stay applied, failures are reported per id."""

    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_count": len(self.succeeded),
            "failure_count": len(self.failed),
        }


class GradingService:
    """
    Service für die automatische und manuelle Bewertung von Prüfungsversuchen.

    Every write to a response happens inside a transaction holding the
    response's row lock, so concurrent graders scoring different questions
    merge through the per-question score map.
    """

    def __init__(self):
        self.logger = logger

    # ------------------------------------------------------------------
    # Auto-grading
    # ------------------------------------------------------------------

    def auto_grade(
        self,
        response: ExamResponse,
        questions: Sequence[ExamQuestion],
        pass_percentage: float,
    ) -> List[str]:
        """
        Scores every auto-gradable question of a response in place.

        Scores of questions that need manual grading, and scores an
        instructor set by hand, are left untouched.

        Args:
            response: Submitted response, saved by the caller
            questions: Current questions of the exam
            pass_percentage: Pass threshold of the exam

        Returns:
            Keys of questions whose answer key could not be evaluated
        """
        scores = dict(response.question_scores or {})
        malformed = []
        manual_keys = set(response.manual_score_keys or [])

        for question in questions:
            if not question.can_auto_grade or question.key in manual_keys:
                continue
            try:
                scores[question.key] = grade_question(question, response.answers.get(question.key))
            except MalformedQuestionError as e:
                self.logger.warning(
                    f"Auto-grading of question {question.key} on response {response.id} failed: {e}"
                )
                scores[question.key] = 0
                malformed.append(question.key)

        response.question_scores = scores
        response.auto_graded = bool(questions) and all(q.can_auto_grade for q in questions)
        if malformed:
            self._mark_flagged(
                response,
                "Auto-grading could not evaluate question(s): " + ", ".join(malformed),
                FlagPriority.MEDIUM,
            )
        recompute_totals(response, questions, pass_percentage)
        return malformed

    def auto_grade_response(self, response_id) -> ExamResponse:
        with transaction.atomic():
            response = self._get_response_for_update(response_id)
            if not response.is_submitted:
                raise InvalidStateError("Only submitted responses can be graded", response.status)
            exam = response.exam
            self.auto_grade(response, list(exam.questions.all()), exam.pass_percentage)
            response.save()
        self.logger.info(
            f"Response {response.id} auto-graded: {response.total_score}/{response.max_score} "
            f"graded={response.graded}"
        )
        return response

    def auto_grade_all(self, exam_id) -> BatchGradeResult:
        result = BatchGradeResult()
        response_ids = ExamResponse.objects.filter(
            exam_id=exam_id,
            status__in=[ResponseStatus.SUBMITTED, ResponseStatus.GRADED],
        ).values_list("id", flat=True)

        for response_id in response_ids:
            try:
                self.auto_grade_response(response_id)
                result.succeeded.append(str(response_id))
            except ExamEngineError as e:
                self.logger.warning(f"Auto-grading of response {response_id} failed: {e.message}")
                result.failed[str(response_id)] = e.to_dict()
        return result

    # ------------------------------------------------------------------
    # Manual grading
    # ------------------------------------------------------------------

    def manual_grade(
        self,
        response_id,
        question_id,
        score: Any,
        feedback: Optional[str] = None,
        grader_id: Optional[str] = None,
    ) -> ExamResponse:
        """
        Records an instructor's score for one question and recomputes totals.

        Raises:
            NotFoundError: Unknown response or question not part of the exam
            InvalidStateError: Response has not been submitted
            InvalidScoreError: Score outside [0, question.points]
        """
        with transaction.atomic():
            response = self._get_response_for_update(response_id)
            if not response.is_submitted:
                raise InvalidStateError("Only submitted responses can be graded", response.status)

            exam = response.exam
            questions = list(exam.questions.all())
            question = next((q for q in questions if q.key == str(question_id)), None)
            if question is None:
                raise NotFoundError("Question", question_id)

            if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= question.points:
                raise InvalidScoreError(score, question.points)

            scores = dict(response.question_scores or {})
            scores[question.key] = score
            response.question_scores = scores
            if question.key not in (response.manual_score_keys or []):
                response.manual_score_keys = list(response.manual_score_keys or []) + [question.key]
            if feedback:
                notes = dict(response.question_feedback or {})
                notes[question.key] = feedback
                response.question_feedback = notes

            now = timezone.now()
            response.graded_by = grader_id
            response.graded_at = now
            recompute_totals(response, questions, exam.pass_percentage, now=now)
            response.save()

        self.logger.info(
            f"Question {question.key} on response {response.id} scored {score}/{question.points} "
            f"by {grader_id}, graded={response.graded}"
        )
        return response

    def set_feedback(self, response_id, feedback: str, grader_id: Optional[str] = None) -> ExamResponse:
        with transaction.atomic():
            response = self._get_response_for_update(response_id)
            if not response.is_submitted:
                raise InvalidStateError("Feedback requires a submitted response", response.status)
            response.instructor_feedback = feedback
            response.graded_by = grader_id or response.graded_by
            response.save(update_fields=["instructor_feedback", "graded_by", "updated_at"])
        return response

    def batch_grade(
        self,
        response_ids: List[str],
        operation: BatchGradeOperation,
        grader_id: Optional[str] = None,
    ) -> BatchGradeResult:
        """
        Applies one operation to each response independently.

        A failing id does not roll back the ids processed before it.
        """
        operation.validate()
        result = BatchGradeResult()

        for response_id in response_ids:
            try:
                if operation.kind == BATCH_SCORE:
                    self.manual_grade(
                        response_id, operation.question_id, operation.score, operation.feedback, grader_id
                    )
                elif operation.kind == BATCH_FEEDBACK:
                    self.set_feedback(response_id, operation.feedback, grader_id)
                else:
                    self.flag_for_review(response_id, operation.reason, operation.priority)
                result.succeeded.append(str(response_id))
            except ExamEngineError as e:
                self.logger.warning(f"Batch {operation.kind} failed for response {response_id}: {e.message}")
                result.failed[str(response_id)] = e.to_dict()

        self.logger.info(
            f"Batch {operation.kind} by {grader_id}: {len(result.succeeded)} ok, {len(result.failed)} failed"
        )
        return result

    # ------------------------------------------------------------------
    # Review flags
    # ------------------------------------------------------------------

    def flag_for_review(self, response_id, reason: str, priority: str = FlagPriority.MEDIUM) -> ExamResponse:
        if priority not in FlagPriority.values:
            raise ValidationError([f"priority must be one of {', '.join(FlagPriority.values)}"])
        with transaction.atomic():
            response = self._get_response_for_update(response_id)
            response.flagged_for_review = True
            response.flag_reason = reason or ""
            response.flag_priority = priority
            response.save(update_fields=["flagged_for_review", "flag_reason", "flag_priority", "updated_at"])
        return response

    def unflag(self, response_id) -> ExamResponse:
        with transaction.atomic():
            response = self._get_response_for_update(response_id)
            response.flagged_for_review = False
            response.flag_reason = ""
            response.flag_priority = None
            response.save(update_fields=["flagged_for_review", "flag_reason", "flag_priority", "updated_at"])
        return response

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_response_for_update(self, response_id) -> ExamResponse:
        try:
            return ExamResponse.objects.select_for_update().select_related("exam").get(pk=response_id)
        except (ExamResponse.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Response", response_id)

    def _mark_flagged(self, response: ExamResponse, reason: str, priority: str) -> None:
        if response.flagged_for_review and response.flag_reason and reason not in response.flag_reason:
            response.flag_reason = f"{response.flag_reason}\n{reason}"
        else:
            response.flag_reason = reason
        response.flagged_for_review = True
        response.flag_priority = response.flag_priority or priority
