"""
Response Collector Service

Handles the student side of an exam: starting attempts inside the exam
window, saving answers while an attempt is in progress, and submitting.

Submission is a compare-and-swap on the response status
(IN_PROGRESS -> SUBMITTED) executed as one conditional UPDATE; whoever
changes zero rows lost the race and receives AlreadySubmittedError. The
expiry sweep uses the same pattern, so it is idempotent and may run from
several schedulers at once.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from ..exceptions import (
    AlreadySubmittedError,
    AttemptLimitExceededError,
    InvalidStateError,
    NotFoundError,
    OutOfWindowError,
    ValidationError,
)
from ..models import Exam, ExamResponse, ResponseStatus
from .grading_service import GradingService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts of one expiry sweep."""

    submitted: int = 0
    abandoned: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return self.submitted + self.abandoned

    def to_dict(self) -> Dict[str, int]:
        return {
            "submitted": self.submitted,
            "abandoned": self.abandoned,
            "skipped": self.skipped,
        }


@dataclass
class EligibilityResult:
    """Whether a student may start an attempt right now, and why not."""

    can_take: bool
    reason: str
    attempts_used: int
    attempts_remaining: int
    max_attempts: int
    active_response_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_take": self.can_take,
            "reason": self.reason,
            "attempts_used": self.attempts_used,
            "attempts_remaining": self.attempts_remaining,
            "max_attempts": self.max_attempts,
            "active_response_id": self.active_response_id,
        }


class ResponseCollectorService:
    """
    Service für Prüfungsversuche von Studierenden.

    The caller is responsible for checking that ``student_id`` belongs to
    the authenticated student.
    """

    def __init__(self, grading_service: Optional[GradingService] = None):
        self.logger = logger
        self.grading = grading_service or GradingService()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_response(self, response_id) -> ExamResponse:
        try:
            return ExamResponse.objects.select_related("exam").get(pk=response_id)
        except (ExamResponse.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Response", response_id)

    def attempt_count(self, exam_id, student_id: str) -> int:
        return ExamResponse.objects.filter(exam_id=exam_id, student_id=str(student_id)).count()

    def has_active_attempt(self, exam_id, student_id: str) -> bool:
        return ExamResponse.objects.filter(
            exam_id=exam_id,
            student_id=str(student_id),
            status=ResponseStatus.IN_PROGRESS,
        ).exists()

    def attempt_history(self, exam_id, student_id: str) -> List[ExamResponse]:
        return list(
            ExamResponse.objects.filter(exam_id=exam_id, student_id=str(student_id))
            .select_related("exam")
            .order_by("attempt_number")
        )

    def check_eligibility(self, exam_id, student_id: str, now=None) -> EligibilityResult:
        exam = self._get_exam(exam_id)
        now = now or timezone.now()
        student_id = str(student_id)

        used = self.attempt_count(exam.id, student_id)
        remaining = max(0, exam.max_attempts - used)
        active = (
            ExamResponse.objects.filter(
                exam=exam, student_id=student_id, status=ResponseStatus.IN_PROGRESS
            )
            .values_list("id", flat=True)
            .first()
        )

        if not exam.can_student_take(now):
            reason = f"Exam is not open for attempts (status {exam.effective_status(now)})"
        elif used >= exam.max_attempts:
            reason = "Attempt limit reached"
        elif active is not None:
            reason = "An attempt is already in progress"
        else:
            reason = ""

        return EligibilityResult(
            can_take=not reason,
            reason=reason,
            attempts_used=used,
            attempts_remaining=remaining,
            max_attempts=exam.max_attempts,
            active_response_id=str(active) if active is not None else None,
        )

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def start_attempt(self, exam_id, student_id: str) -> ExamResponse:
        """
        Starts a new attempt for a student.

        Prior attempts are counted while holding the exam's row lock, so two
        concurrent starts by the same student get distinct attempt numbers
        and cannot both pass the limit check.

        Raises:
            NotFoundError: Unknown exam
            OutOfWindowError: Exam not published, hidden, or outside its window
            AttemptLimitExceededError: All attempts used
            InvalidStateError: Another attempt is still in progress
        """
        student_id = str(student_id)
        with transaction.atomic():
            exam = self._get_exam(exam_id, lock=True)
            now = timezone.now()
            if not exam.can_student_take(now):
                raise OutOfWindowError(
                    "Exam is not open for attempts",
                    details={
                        "status": exam.effective_status(now),
                        "start_time": exam.start_time.isoformat(),
                        "end_time": exam.end_time.isoformat(),
                    },
                )

            attempts = ExamResponse.objects.filter(exam=exam, student_id=student_id)
            used = attempts.count()
            if used >= exam.max_attempts:
                raise AttemptLimitExceededError(exam.max_attempts, used)
            if attempts.filter(status=ResponseStatus.IN_PROGRESS).exists():
                raise InvalidStateError(
                    "Student already has an attempt in progress", ResponseStatus.IN_PROGRESS
                )

            last_number = attempts.aggregate(last=Max("attempt_number"))["last"] or 0
            response = ExamResponse.objects.create(
                exam=exam,
                student_id=student_id,
                course_id=exam.course_id,
                started_at=now,
                status=ResponseStatus.IN_PROGRESS,
                max_score=exam.total_points,
                attempt_number=max(used, last_number) + 1,
            )

        self.logger.info(
            f"Attempt {response.attempt_number} started: response {response.id} "
            f"exam {exam.id} student {student_id}"
        )
        return response

    def save_answer(self, response_id, question_id, answer: Any) -> ExamResponse:
        return self.save_answers(response_id, {question_id: answer})

    def save_answers(self, response_id, answers: Dict[Any, Any]) -> ExamResponse:
        """
        Upserts answers on an attempt in progress; the last write wins.

        Raises:
            NotFoundError: Unknown response or question
            InvalidStateError: Attempt no longer in progress
            OutOfWindowError: Exam end time has passed
            ValidationError: Answers not given as a mapping
        """
        if not isinstance(answers, dict):
            raise ValidationError(["answers must be an object mapping question ids to answers"])

        with transaction.atomic():
            response = self._get_response_for_update(response_id)
            if response.status != ResponseStatus.IN_PROGRESS:
                raise InvalidStateError("Answers can only be saved while in progress", response.status)
            if timezone.now() >= response.exam.end_time:
                raise OutOfWindowError(
                    "Exam has ended",
                    details={"end_time": response.exam.end_time.isoformat()},
                )

            question_keys = {str(qid) for qid in response.exam.questions.values_list("id", flat=True)}
            merged = dict(response.answers or {})
            for question_id, answer in answers.items():
                key = str(question_id)
                if key not in question_keys:
                    raise NotFoundError("Question", key)
                merged[key] = None if answer is None else str(answer)
            response.answers = merged
            response.save(update_fields=["answers", "updated_at"])
        return response

    def submit(self, response_id, answers: Optional[Dict[Any, Any]] = None) -> ExamResponse:
        """
        Submits an attempt exactly once, then auto-grades it.

        Args:
            response_id: Attempt to submit
            answers: Optional final answers merged before grading

        Raises:
            NotFoundError: Unknown response
            AlreadySubmittedError: Response was submitted before (lost race)
            InvalidStateError: Response was abandoned
        """
        if answers is not None and not isinstance(answers, dict):
            raise ValidationError(["answers must be an object mapping question ids to answers"])

        response_id = self.get_response(response_id).pk
        with transaction.atomic():
            now = timezone.now()
            won = ExamResponse.objects.filter(
                pk=response_id, status=ResponseStatus.IN_PROGRESS
            ).update(status=ResponseStatus.SUBMITTED, submitted_at=now, updated_at=now)

            if not won:
                current = self.get_response(response_id)
                if current.status == ResponseStatus.ABANDONED:
                    raise InvalidStateError("Abandoned attempts cannot be submitted", current.status)
                raise AlreadySubmittedError(current.id, current.status)

            response = self._get_response_for_update(response_id)
            exam = response.exam
            questions = list(exam.questions.all())

            if answers:
                question_keys = {question.key for question in questions}
                merged = dict(response.answers or {})
                for question_id, answer in answers.items():
                    key = str(question_id)
                    if key not in question_keys:
                        raise NotFoundError("Question", key)
                    merged[key] = None if answer is None else str(answer)
                response.answers = merged

            response.time_spent = max(0, int((now - response.started_at).total_seconds()))
            response.late_submission = now > exam.end_time
            self.grading.auto_grade(response, questions, exam.pass_percentage)
            response.save()

        self.logger.info(
            f"Response {response.id} submitted: {response.total_score}/{response.max_score} "
            f"status={response.status} late={response.late_submission}"
        )
        return response

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def sweep_expired_attempts(self, now=None) -> SweepResult:
        """
        Closes every attempt still in progress after its exam ended.

        Exams with ``auto_submit`` get a forced submission with the answers
        saved so far; all others are marked ABANDONED. Responses that reach a
        terminal state concurrently are counted as skipped.
        """
        now = now or timezone.now()
        result = SweepResult()
        expired = (
            ExamResponse.objects.filter(status=ResponseStatus.IN_PROGRESS, exam__end_time__lte=now)
            .select_related("exam")
            .order_by("started_at")
        )

        for response in expired:
            if response.exam.auto_submit:
                try:
                    self.submit(response.id)
                    result.submitted += 1
                except (AlreadySubmittedError, InvalidStateError):
                    self.logger.debug(f"Sweep: response {response.id} already closed")
                    result.skipped += 1
            else:
                changed = ExamResponse.objects.filter(
                    pk=response.id, status=ResponseStatus.IN_PROGRESS
                ).update(status=ResponseStatus.ABANDONED, updated_at=now)
                if changed:
                    result.abandoned += 1
                    self.logger.info(f"Sweep: response {response.id} abandoned")
                else:
                    self.logger.debug(f"Sweep: response {response.id} already closed")
                    result.skipped += 1

        self.logger.info(
            f"Sweep finished: {result.submitted} submitted, {result.abandoned} abandoned, "
            f"{result.skipped} skipped"
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_exam(self, exam_id, lock: bool = False) -> Exam:
        queryset = Exam.objects.select_for_update() if lock else Exam.objects.all()
        try:
            return queryset.get(pk=exam_id)
        except (Exam.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Exam", exam_id)

    def _get_response_for_update(self, response_id) -> ExamResponse:
        try:
            return ExamResponse.objects.select_for_update().select_related("exam").get(pk=response_id)
        except (ExamResponse.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Response", response_id)
