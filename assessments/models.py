"""
Assessment Models - Exam Assessment and Grading Engine

This module defines the persistent documents of the exam engine: the exam
aggregate with its ordered question list, and one response document per
student attempt.

Models:
- Exam: timed assessment with settings, pass threshold and lifecycle status
- ExamQuestion: question embedded in an exam (multiple-choice, true-false,
  text, essay)
- ExamResponse: one student's attempt, answers, per-question scores and
  grading state

Derived values (total points, response totals) are never recomputed inside
read accessors. The service layer recomputes them explicitly right after
every mutation.

Author: DSP Development Team
Version: 1.0.0
"""

import uuid
from typing import Optional

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from django.core.validators import MinValueValidator, MaxValueValidator


class ExamStatus(models.TextChoices):
    DRAFT = "DRAFT", _("Draft")
    PUBLISHED = "PUBLISHED", _("Published")
    ACTIVE = "ACTIVE", _("Active")
    COMPLETED = "COMPLETED", _("Completed")
    CANCELLED = "CANCELLED", _("Cancelled")


# Only these are ever written to Exam.status, ACTIVE/COMPLETED are derived.
STORED_EXAM_STATUSES = (ExamStatus.DRAFT, ExamStatus.PUBLISHED, ExamStatus.CANCELLED)


class QuestionType(models.TextChoices):
    MULTIPLE_CHOICE = "multiple-choice", _("Multiple choice")
    TRUE_FALSE = "true-false", _("True / false")
    TEXT = "text", _("Short text")
    ESSAY = "essay", _("Essay")


class ResponseStatus(models.TextChoices):
    IN_PROGRESS = "IN_PROGRESS", _("In progress")
    SUBMITTED = "SUBMITTED", _("Submitted")
    GRADED = "GRADED", _("Graded")
    ABANDONED = "ABANDONED", _("Abandoned")


class FlagPriority(models.TextChoices):
    LOW = "low", _("Low")
    MEDIUM = "medium", _("Medium")
    HIGH = "high", _("High")


class Exam(models.Model):
    """
    Timed exam owned by one instructor inside one course.

    ``course_id`` and ``instructor_id`` are opaque identifiers supplied by
    the identity and course collaborators; the engine never resolves them.
    ``total_points`` always equals the sum of the question points and is
    written only by the definition service.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    course_id = models.CharField(max_length=64, db_index=True)
    instructor_id = models.CharField(max_length=64, db_index=True)

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    instructions = models.TextField(blank=True, default="")

    # Timing
    duration = models.PositiveSmallIntegerField(
        help_text=_("Bearbeitungszeit in Minuten."),
    )
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    publish_time = models.DateTimeField(null=True, blank=True)

    # Settings
    max_attempts = models.PositiveSmallIntegerField(
        default=1, validators=[MinValueValidator(1)]
    )
    show_results = models.BooleanField(default=True)
    shuffle_questions = models.BooleanField(default=False)
    shuffle_options = models.BooleanField(default=False)
    allow_navigation = models.BooleanField(default=True)
    show_timer = models.BooleanField(default=True)
    auto_submit = models.BooleanField(default=True)
    require_safe_browser = models.BooleanField(default=False)
    visible_to_students = models.BooleanField(default=False)

    # Grading
    pass_percentage = models.FloatField(
        default=60.0,
        validators=[MinValueValidator(0.0), MaxValueValidator(100.0)],
    )
    total_points = models.PositiveIntegerField(default=0, editable=False)

    status = models.CharField(
        max_length=12,
        choices=ExamStatus.choices,
        default=ExamStatus.DRAFT,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Exam")
        verbose_name_plural = _("Exams")
        ordering = ["start_time", "title"]
        indexes = [
            models.Index(fields=["course_id", "status"]),
        ]

    def __str__(self):
        return f"{self.title} ({self.status})"

    def effective_status(self, now=None) -> str:
        """
        Status including the clock-derived ACTIVE / COMPLETED states.

        Args:
            now: Reference time, defaults to ``timezone.now()``

        Returns:
            One of the ExamStatus values
        """
        now = now or timezone.now()
        if self.status != ExamStatus.PUBLISHED:
            return self.status
        if now >= self.end_time:
            return ExamStatus.COMPLETED
        if self.start_time <= now:
            return ExamStatus.ACTIVE
        return ExamStatus.PUBLISHED

    def is_within_window(self, now=None) -> bool:
        now = now or timezone.now()
        return self.start_time <= now < self.end_time

    def is_editable(self, now=None) -> bool:
        """DRAFT, or PUBLISHED before the window opens."""
        return self.effective_status(now) in (ExamStatus.DRAFT, ExamStatus.PUBLISHED)

    def can_student_take(self, now=None) -> bool:
        return (
            self.status == ExamStatus.PUBLISHED
            and self.visible_to_students
            and self.is_within_window(now)
        )


class ExamQuestion(models.Model):
    """Question embedded in an exam, ordered by ``display_order``."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name="questions")

    question_type = models.CharField(max_length=20, choices=QuestionType.choices)
    text = models.TextField()
    options = models.JSONField(default=list, blank=True)
    correct_answer = models.CharField(max_length=1000, null=True, blank=True)
    correct_answer_index = models.IntegerField(null=True, blank=True)
    points = models.PositiveIntegerField(default=5)
    explanation = models.TextField(blank=True, default="")
    required = models.BooleanField(default=True)

    # Text questions
    case_sensitive = models.BooleanField(default=False)
    acceptable_answers = models.JSONField(default=list, blank=True)
    max_length = models.PositiveIntegerField(null=True, blank=True)

    time_limit = models.PositiveIntegerField(
        null=True, blank=True, help_text=_("Optionales Zeitlimit in Sekunden.")
    )
    display_order = models.PositiveIntegerField(default=1)

    class Meta:
        verbose_name = _("Exam Question")
        verbose_name_plural = _("Exam Questions")
        ordering = ["exam", "display_order"]

    def __str__(self):
        return f"Q{self.display_order} [{self.question_type}] {self.text[:40]}"

    @property
    def key(self) -> str:
        """Key under which answers and scores are stored on a response."""
        return str(self.id)

    @property
    def can_auto_grade(self) -> bool:
        if self.question_type in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
            return True
        if self.question_type == QuestionType.TEXT:
            return any(str(a).strip() for a in (self.acceptable_answers or []) if a is not None)
        return False


class ExamResponse(models.Model):
    """
    One student's attempt at an exam.

    Responses are audit records: they are never deleted, and their status
    only moves forward (IN_PROGRESS -> SUBMITTED -> GRADED, or
    IN_PROGRESS -> ABANDONED). ``max_score`` is the exam's total points at
    the moment the attempt started.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    exam = models.ForeignKey(Exam, on_delete=models.PROTECT, related_name="responses")
    student_id = models.CharField(max_length=64, db_index=True)
    course_id = models.CharField(max_length=64, db_index=True)

    answers = models.JSONField(default=dict, blank=True)
    question_scores = models.JSONField(default=dict, blank=True)
    question_feedback = models.JSONField(default=dict, blank=True)
    # Question keys scored by an instructor; auto-grading never overwrites them.
    manual_score_keys = models.JSONField(default=list, blank=True)

    started_at = models.DateTimeField(default=timezone.now)
    submitted_at = models.DateTimeField(null=True, blank=True)
    time_spent = models.PositiveIntegerField(
        null=True, blank=True, help_text=_("Bearbeitungszeit in Sekunden.")
    )

    status = models.CharField(
        max_length=12,
        choices=ResponseStatus.choices,
        default=ResponseStatus.IN_PROGRESS,
        db_index=True,
    )
    total_score = models.IntegerField(default=0)
    max_score = models.PositiveIntegerField(default=0)
    percentage = models.FloatField(default=0.0)
    passed = models.BooleanField(default=False)
    graded = models.BooleanField(default=False)
    auto_graded = models.BooleanField(default=False)

    attempt_number = models.PositiveIntegerField(default=1)

    instructor_feedback = models.TextField(blank=True, default="")
    graded_by = models.CharField(max_length=64, null=True, blank=True)
    graded_at = models.DateTimeField(null=True, blank=True)

    flagged_for_review = models.BooleanField(default=False)
    flag_reason = models.TextField(blank=True, default="")
    flag_priority = models.CharField(
        max_length=6, choices=FlagPriority.choices, null=True, blank=True
    )
    late_submission = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Exam Response")
        verbose_name_plural = _("Exam Responses")
        ordering = ["exam", "student_id", "attempt_number"]
        constraints = [
            models.UniqueConstraint(
                fields=["exam", "student_id", "attempt_number"],
                name="unique_attempt_number_per_student",
            ),
        ]
        indexes = [
            models.Index(fields=["exam", "status"]),
            models.Index(fields=["exam", "student_id"]),
        ]

    def __str__(self):
        return f"Attempt {self.attempt_number} of {self.student_id} for {self.exam_id}"

    @property
    def is_submitted(self) -> bool:
        return self.status in (ResponseStatus.SUBMITTED, ResponseStatus.GRADED)

    @property
    def needs_grading(self) -> bool:
        return self.status == ResponseStatus.SUBMITTED and not self.graded

    def score_for(self, question_id) -> Optional[int]:
        return self.question_scores.get(str(question_id))
