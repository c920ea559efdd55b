"""
Exam Definition Service

Owns the exam aggregate: the exam itself and its embedded, ordered question
list. Validates structure on creation and update, validates publish
readiness, and keeps ``Exam.total_points`` equal to the sum of the question
points by recomputing it right after every mutation.

Editing rule: an exam (and its questions) may be changed while it is a
DRAFT, or PUBLISHED before its window opens. Question edits on a PUBLISHED
exam must leave it publishable, otherwise they are rolled back. Live,
completed and cancelled exams are read-only.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from ..exceptions import InvalidStateError, NotFoundError, OutOfWindowError, ValidationError
from ..models import Exam, ExamQuestion, ExamStatus, QuestionType

logger = logging.getLogger(__name__)

EXAM_SETTING_FIELDS = (
    "max_attempts",
    "show_results",
    "shuffle_questions",
    "shuffle_options",
    "allow_navigation",
    "show_timer",
    "auto_submit",
    "require_safe_browser",
    "visible_to_students",
)

UPDATABLE_EXAM_FIELDS = (
    "title",
    "description",
    "instructions",
    "duration",
    "start_time",
    "end_time",
    "publish_time",
    "pass_percentage",
) + EXAM_SETTING_FIELDS

DATETIME_FIELDS = ("start_time", "end_time", "publish_time")

QUESTION_FIELDS = (
    "type",
    "text",
    "options",
    "correct_answer",
    "correct_answer_index",
    "points",
    "explanation",
    "required",
    "case_sensitive",
    "acceptable_answers",
    "max_length",
    "time_limit",
)


def compute_total_points(questions: Iterable[ExamQuestion]) -> int:
    """Sum of the question points; the only source of ``Exam.total_points``."""
    return sum(question.points or 0 for question in questions)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _coerce_datetime(value: Any) -> Optional[datetime]:
    """
    Parses an ISO 8601 value.

    Raises:
        ValueError: Unparseable text or an impossible date such as Feb 30
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = parse_datetime(str(value))
        if parsed is None:
            raise ValueError(f"{value!r} is not an ISO 8601 datetime")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _coerce_datetimes(source: Dict[str, Any], names: Iterable[str], values: Dict[str, Any]) -> List[str]:
    """Parses the named datetime fields of ``source`` into ``values``, returning the invalid names."""
    invalid = []
    for name in names:
        if name not in source:
            continue
        try:
            values[name] = _coerce_datetime(source[name])
        except ValueError:
            values[name] = None
            invalid.append(name)
    return invalid


def validate_question_data(data: Dict[str, Any], label: str = "question") -> List[str]:
    """
    Structural checks for a question definition.

    Point values of zero are accepted here and rejected at publish time,
    so an instructor can draft a question before weighting it.

    Args:
        data: Question fields (see QUESTION_FIELDS)
        label: Prefix used in violation messages

    Returns:
        List of violations, empty when the question is well formed
    """
    if not isinstance(data, dict):
        return [f"{label}: question must be an object"]

    violations = []

    question_type = data.get("type")
    if question_type not in QuestionType.values:
        violations.append(f"{label}: unknown question type {question_type!r}")

    if not str(data.get("text") or "").strip():
        violations.append(f"{label}: question text is required")

    points = data.get("points", 5)
    if not _is_int(points) or points < 0:
        violations.append(f"{label}: points must be a non-negative integer")

    options = data.get("options") or []
    if not isinstance(options, list):
        violations.append(f"{label}: options must be a list")
        options = []

    acceptable = data.get("acceptable_answers") or []
    if not isinstance(acceptable, list):
        violations.append(f"{label}: acceptable answers must be a list")

    correct_answer = data.get("correct_answer")
    if correct_answer is not None and not isinstance(correct_answer, (str, int)):
        violations.append(f"{label}: correct answer must be text")

    for name in ("max_length", "time_limit"):
        value = data.get(name)
        if value is not None and (not _is_int(value) or value < 0):
            violations.append(f"{label}: {name} must be a non-negative integer")

    if question_type == QuestionType.MULTIPLE_CHOICE:
        if len(options) < 2:
            violations.append(f"{label}: multiple choice questions need at least 2 options")
        index = data.get("correct_answer_index")
        if index is not None and (not _is_int(index) or not 0 <= index < len(options)):
            violations.append(f"{label}: correct answer index {index!r} is out of range")

    return violations


def publish_violations(questions: List[ExamQuestion]) -> List[str]:
    """
    Publish readiness of a question list.

    Reports missing questions, each question without positive points, and
    the absence of any gradable path (no auto-gradable and no essay
    question). A published exam has to satisfy these after every edit too.
    """
    violations = []
    if not questions:
        violations.append("exam has no questions")
    for question in questions:
        if not question.points or question.points <= 0:
            violations.append(
                f"question {question.id} (#{question.display_order}) must be worth more than 0 points"
            )
    if questions and not any(
        q.can_auto_grade or q.question_type == QuestionType.ESSAY for q in questions
    ):
        violations.append("exam needs at least one auto-gradable question or one essay question")
    return violations


@dataclass
class ExamGradingOverview:
    """Aggregated question and grading breakdown for the instructor view."""

    exam: Exam
    questions: List[ExamQuestion]
    effective_status: str
    auto_gradable_questions: int
    manual_grading_questions: int
    auto_gradable_points: int
    manual_grading_points: int
    question_type_breakdown: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for serialization (questions excluded)."""
        total = self.exam.total_points
        return {
            "id": str(self.exam.id),
            "title": self.exam.title,
            "description": self.exam.description,
            "instructions": self.exam.instructions,
            "course_id": self.exam.course_id,
            "total_points": total,
            "pass_percentage": self.exam.pass_percentage,
            "question_count": self.question_count,
            "auto_gradable_questions": self.auto_gradable_questions,
            "manual_grading_required": self.manual_grading_questions,
            "has_auto_gradable_questions": self.auto_gradable_questions > 0,
            "requires_manual_grading": self.manual_grading_questions > 0,
            "auto_gradable_points": self.auto_gradable_points,
            "manual_grading_points": self.manual_grading_points,
            "auto_gradable_points_share": round(self.auto_gradable_points * 100.0 / total, 1) if total else 0.0,
            "question_type_breakdown": self.question_type_breakdown,
            "duration": self.exam.duration,
            "start_time": self.exam.start_time.isoformat(),
            "end_time": self.exam.end_time.isoformat(),
            "status": self.effective_status,
            "visible_to_students": self.exam.visible_to_students,
        }


class ExamDefinitionService:
    """
    Service für die Verwaltung von Prüfungsdefinitionen.

    Creates, edits, publishes and cancels exams and manages their questions.
    Authorization (owning instructor or admin) is checked by the caller.
    """

    def __init__(self):
        self.logger = logger

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_exam(self, exam_id) -> Exam:
        try:
            return Exam.objects.get(pk=exam_id)
        except (Exam.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Exam", exam_id)

    def get_question(self, exam: Exam, question_id) -> ExamQuestion:
        try:
            return exam.questions.get(pk=question_id)
        except (ExamQuestion.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Question", question_id)

    def list_course_exams(self, course_id: str):
        return Exam.objects.filter(course_id=course_id).order_by("start_time", "title")

    # ------------------------------------------------------------------
    # Exam lifecycle
    # ------------------------------------------------------------------

    def create_exam(self, data: Dict[str, Any], instructor_id: str) -> Exam:
        """
        Creates a DRAFT exam, optionally with an initial question list.

        Args:
            data: Exam fields plus optional ``questions`` list
            instructor_id: Opaque id of the owning instructor

        Returns:
            The persisted exam with total_points recomputed

        Raises:
            ValidationError: With every violated constraint
        """
        if not isinstance(data, dict):
            raise ValidationError(["exam data must be an object"], "Exam could not be created")

        values = {
            "title": str(data.get("title") or "").strip(),
            "course_id": str(data.get("course_id") or "").strip(),
            "description": str(data.get("description") or ""),
            "instructions": str(data.get("instructions") or ""),
            "duration": data.get("duration"),
            "start_time": None,
            "end_time": None,
            "publish_time": None,
            "pass_percentage": data.get(
                "pass_percentage", getattr(settings, "EXAM_DEFAULT_PASS_PERCENTAGE", 60.0)
            ),
            "max_attempts": data.get(
                "max_attempts", getattr(settings, "EXAM_DEFAULT_MAX_ATTEMPTS", 1)
            ),
        }
        for name in EXAM_SETTING_FIELDS:
            if name in data and name != "max_attempts":
                values[name] = bool(data[name])

        invalid_times = _coerce_datetimes(data, DATETIME_FIELDS, values)
        violations = [f"{name} is not a valid datetime" for name in invalid_times]
        violations.extend(self._validate_exam_values(values, skip=invalid_times))
        if not values["course_id"]:
            violations.append("course_id is required")

        questions = data.get("questions")
        if questions is None:
            questions = []
        elif not isinstance(questions, list):
            violations.append("questions must be a list")
            questions = []
        for position, question_data in enumerate(questions, start=1):
            violations.extend(validate_question_data(question_data, f"question {position}"))
        if violations:
            raise ValidationError(violations, "Exam could not be created")

        with transaction.atomic():
            exam = Exam.objects.create(instructor_id=str(instructor_id), **values)
            for position, question_data in enumerate(questions, start=1):
                self._build_question(exam, question_data, position).save()
            self._refresh_total_points(exam)

        self.logger.info(
            f"Exam created: {exam.id} '{exam.title}' for course {exam.course_id} "
            f"({len(questions)} questions, {exam.total_points} points)"
        )
        return exam

    def update_exam(self, exam_id, patch: Dict[str, Any]) -> Exam:
        """
        Applies a partial update while the exam is still editable.

        Raises:
            NotFoundError: Unknown exam
            InvalidStateError: Exam is live, completed or cancelled
            ValidationError: Unknown fields or violated creation rules
        """
        exam = self.get_exam(exam_id)
        self._ensure_editable(exam)
        if not isinstance(patch, dict):
            raise ValidationError(["update must be an object"], "Exam could not be updated")

        unknown = sorted(set(patch) - set(UPDATABLE_EXAM_FIELDS))
        violations = [f"field '{name}' cannot be updated" for name in unknown]

        values = {name: getattr(exam, name) for name in UPDATABLE_EXAM_FIELDS}
        invalid_times = _coerce_datetimes(patch, DATETIME_FIELDS, values)
        violations.extend(f"{name} is not a valid datetime" for name in invalid_times)
        for name in UPDATABLE_EXAM_FIELDS:
            if name not in patch or name in DATETIME_FIELDS:
                continue
            value = patch[name]
            if name in EXAM_SETTING_FIELDS and name != "max_attempts":
                value = bool(value)
            elif name == "title":
                value = str(value or "").strip()
            elif name in ("description", "instructions"):
                value = str(value or "")
            values[name] = value

        violations.extend(self._validate_exam_values(values, skip=invalid_times))
        if violations:
            raise ValidationError(violations, "Exam could not be updated")

        for name, value in values.items():
            setattr(exam, name, value)
        exam.save()
        self.logger.info(f"Exam updated: {exam.id} fields={sorted(patch)}")
        return exam

    def publish(self, exam_id) -> Exam:
        """
        Validates publish readiness and moves a DRAFT exam to PUBLISHED.

        Every violation is reported: missing questions, each question
        without positive points, and the absence of any gradable path
        (no auto-gradable and no essay question).
        """
        with transaction.atomic():
            exam = self._get_exam_for_update(exam_id)
            if exam.status != ExamStatus.DRAFT:
                raise InvalidStateError("Only draft exams can be published", exam.status)

            questions = list(exam.questions.all())
            violations = publish_violations(questions)
            if violations:
                raise ValidationError(violations, "Exam cannot be published")

            exam.total_points = compute_total_points(questions)
            exam.status = ExamStatus.PUBLISHED
            exam.visible_to_students = True
            if exam.publish_time is None:
                exam.publish_time = timezone.now()
            exam.save()

        self.logger.info(f"Exam published: {exam.id} with {exam.total_points} points")
        return exam

    def unpublish(self, exam_id) -> Exam:
        with transaction.atomic():
            exam = self._get_exam_for_update(exam_id)
            if exam.effective_status() != ExamStatus.PUBLISHED:
                raise InvalidStateError(
                    "Only published exams that have not started can be unpublished",
                    exam.effective_status(),
                )
            exam.status = ExamStatus.DRAFT
            exam.visible_to_students = False
            exam.save()
        self.logger.info(f"Exam unpublished: {exam.id}")
        return exam

    def cancel(self, exam_id) -> Exam:
        with transaction.atomic():
            exam = self._get_exam_for_update(exam_id)
            if exam.status == ExamStatus.CANCELLED:
                raise InvalidStateError("Exam is already cancelled", exam.status)
            exam.status = ExamStatus.CANCELLED
            exam.visible_to_students = False
            exam.save()
        self.logger.info(f"Exam cancelled: {exam.id}")
        return exam

    def delete_exam(self, exam_id) -> None:
        exam = self.get_exam(exam_id)
        if exam.responses.exists():
            raise InvalidStateError("Exams with recorded attempts cannot be deleted", exam.status)
        exam.delete()
        self.logger.info(f"Exam deleted: {exam_id}")

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    def add_question(self, exam_id, data: Dict[str, Any]) -> ExamQuestion:
        with transaction.atomic():
            exam = self._get_exam_for_update(exam_id)
            self._ensure_editable(exam)
            violations = validate_question_data(data)
            if violations:
                raise ValidationError(violations, "Question is invalid")

            question = self._build_question(exam, data, exam.questions.count() + 1)
            question.save()
            self._ensure_still_publishable(exam)
            self._refresh_total_points(exam)

        self.logger.info(
            f"Question {question.id} added to exam {exam.id}, total points now {exam.total_points}"
        )
        return question

    def update_question(self, exam_id, question_id, data: Dict[str, Any]) -> ExamQuestion:
        with transaction.atomic():
            exam = self._get_exam_for_update(exam_id)
            question = self.get_question(exam, question_id)
            self._ensure_editable(exam)
            if not isinstance(data, dict):
                raise ValidationError(["question update must be an object"], "Question is invalid")

            violations = [
                f"field '{name}' cannot be updated" for name in sorted(set(data) - set(QUESTION_FIELDS))
            ]
            merged = self._question_values(question)
            merged.update({k: v for k, v in data.items() if k in QUESTION_FIELDS})
            violations.extend(validate_question_data(merged))
            if violations:
                raise ValidationError(violations, "Question is invalid")

            self._apply_question_values(question, merged)
            question.save()
            self._ensure_still_publishable(exam)
            self._refresh_total_points(exam)
        return question

    def remove_question(self, exam_id, question_id) -> Exam:
        with transaction.atomic():
            exam = self._get_exam_for_update(exam_id)
            question = self.get_question(exam, question_id)
            self._ensure_editable(exam)

            question.delete()
            for position, remaining in enumerate(exam.questions.order_by("display_order"), start=1):
                if remaining.display_order != position:
                    remaining.display_order = position
                    remaining.save(update_fields=["display_order"])
            self._ensure_still_publishable(exam)
            self._refresh_total_points(exam)

        self.logger.info(
            f"Question {question_id} removed from exam {exam.id}, total points now {exam.total_points}"
        )
        return exam

    def reorder_questions(self, exam_id, question_ids: List[str]) -> List[ExamQuestion]:
        """Listed questions come first in the given order, the rest keep theirs."""
        with transaction.atomic():
            exam = self._get_exam_for_update(exam_id)
            self._ensure_editable(exam)

            current = OrderedDict(
                (q.key, q) for q in exam.questions.order_by("display_order")
            )
            requested = [str(qid) for qid in question_ids]
            for qid in requested:
                if qid not in current:
                    raise NotFoundError("Question", qid)

            ordered = [current[qid] for qid in dict.fromkeys(requested)]
            ordered += [q for key, q in current.items() if key not in requested]
            for position, question in enumerate(ordered, start=1):
                question.display_order = position
                question.save(update_fields=["display_order"])
        return ordered

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_student_exam(self, exam_id) -> Exam:
        """Exam a student may open right now; answer keys are stripped by the serializer."""
        exam = self.get_exam(exam_id)
        if not exam.can_student_take():
            raise OutOfWindowError(
                "Exam is not available for students",
                details={"status": exam.effective_status()},
            )
        return exam

    def get_exam_for_grading(self, exam_id) -> ExamGradingOverview:
        exam = self.get_exam(exam_id)
        questions = list(exam.questions.order_by("display_order"))

        breakdown = {qtype: {"count": 0, "points": 0} for qtype in QuestionType.values}
        auto_count = manual_count = auto_points = manual_points = 0
        for question in questions:
            entry = breakdown[question.question_type]
            entry["count"] += 1
            entry["points"] += question.points
            if question.can_auto_grade:
                auto_count += 1
                auto_points += question.points
            else:
                manual_count += 1
                manual_points += question.points

        return ExamGradingOverview(
            exam=exam,
            questions=questions,
            effective_status=exam.effective_status(),
            auto_gradable_questions=auto_count,
            manual_grading_questions=manual_count,
            auto_gradable_points=auto_points,
            manual_grading_points=manual_points,
            question_type_breakdown=breakdown,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_exam_for_update(self, exam_id) -> Exam:
        try:
            return Exam.objects.select_for_update().get(pk=exam_id)
        except (Exam.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Exam", exam_id)

    def _ensure_editable(self, exam: Exam) -> None:
        if not exam.is_editable():
            raise InvalidStateError(
                "Exam can only be edited while it is a draft or has not started yet",
                exam.effective_status(),
            )

    def _ensure_still_publishable(self, exam: Exam) -> None:
        """
        Re-checks publish readiness after a question edit on a published exam.

        Raising inside the caller's transaction rolls the edit back.
        """
        if exam.status != ExamStatus.PUBLISHED:
            return
        violations = publish_violations(list(exam.questions.order_by("display_order")))
        if violations:
            raise ValidationError(violations, "Change would leave the published exam unpublishable")

    def _refresh_total_points(self, exam: Exam) -> None:
        exam.total_points = compute_total_points(exam.questions.all())
        exam.save(update_fields=["total_points", "updated_at"])

    def _validate_exam_values(self, values: Dict[str, Any], skip: Iterable[str] = ()) -> List[str]:
        violations = []
        min_duration = getattr(settings, "EXAM_MIN_DURATION_MINUTES", 5)
        max_duration = getattr(settings, "EXAM_MAX_DURATION_MINUTES", 480)

        if not values.get("title"):
            violations.append("title is required")

        duration = values.get("duration")
        if not _is_int(duration) or not min_duration <= duration <= max_duration:
            violations.append(
                f"duration must be between {min_duration} and {max_duration} minutes"
            )

        start_time, end_time = values.get("start_time"), values.get("end_time")
        if start_time is None and "start_time" not in skip:
            violations.append("start_time is required")
        if end_time is None and "end_time" not in skip:
            violations.append("end_time is required")
        if start_time is not None and end_time is not None and start_time >= end_time:
            violations.append("start_time must be before end_time")

        pass_percentage = values.get("pass_percentage")
        if (
            not isinstance(pass_percentage, (int, float))
            or isinstance(pass_percentage, bool)
            or not 0 <= pass_percentage <= 100
        ):
            violations.append("pass_percentage must be between 0 and 100")

        max_attempts = values.get("max_attempts")
        if not _is_int(max_attempts) or max_attempts < 1:
            violations.append("max_attempts must be at least 1")

        return violations

    def _build_question(self, exam: Exam, data: Dict[str, Any], display_order: int) -> ExamQuestion:
        question = ExamQuestion(exam=exam, display_order=display_order)
        self._apply_question_values(question, data)
        return question

    def _apply_question_values(self, question: ExamQuestion, data: Dict[str, Any]) -> None:
        question.question_type = data["type"]
        question.text = str(data["text"]).strip()
        question.options = [str(option) for option in (data.get("options") or [])]
        question.correct_answer = data.get("correct_answer")
        question.correct_answer_index = data.get("correct_answer_index")
        question.points = data.get("points", 5)
        question.explanation = data.get("explanation") or ""
        question.required = bool(data.get("required", True))
        question.case_sensitive = bool(data.get("case_sensitive", False))
        question.acceptable_answers = [
            str(answer) for answer in (data.get("acceptable_answers") or []) if answer is not None
        ]
        question.max_length = data.get("max_length")
        question.time_limit = data.get("time_limit")

    def _question_values(self, question: ExamQuestion) -> Dict[str, Any]:
        return {
            "type": question.question_type,
            "text": question.text,
            "options": list(question.options or []),
            "correct_answer": question.correct_answer,
            "correct_answer_index": question.correct_answer_index,
            "points": question.points,
            "explanation": question.explanation,
            "required": question.required,
            "case_sensitive": question.case_sensitive,
            "acceptable_answers": list(question.acceptable_answers or []),
            "max_length": question.max_length,
            "time_limit": question.time_limit,
        }
