"""
Assessment Django Admin Configuration

Admin interface for exams, their questions and the recorded attempts.
Responses are audit records: the admin shows them read-only and never
deletes them.

Author: DSP Development Team
Version: 1.0.0
"""

from typing import Optional

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.translation import gettext_lazy as _

from .models import Exam, ExamQuestion, ExamResponse


class ExamQuestionInline(admin.StackedInline):
    model = ExamQuestion
    extra = 0
    ordering = ("display_order",)
    fields = (
        ("question_type", "points", "display_order"),
        "text",
        "options",
        ("correct_answer", "correct_answer_index"),
        ("acceptable_answers", "case_sensitive"),
        "explanation",
    )


@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    """
    Administration interface for exam management.

    Total points are maintained by the definition service and shown read-only.
    """

    list_display = (
        "title",
        "course_id",
        "instructor_id",
        "status",
        "get_effective_status",
        "start_time",
        "end_time",
        "total_points",
        "response_count",
    )
    list_filter = ("status", "visible_to_students", "start_time")
    search_fields = ("title", "course_id", "instructor_id")
    inlines = [ExamQuestionInline]

    fieldsets = (
        (
            _("Basic Information"),
            {"fields": ("title", "course_id", "instructor_id", "description", "instructions")},
        ),
        (
            _("Timing"),
            {"fields": ("duration", "start_time", "end_time", "publish_time")},
        ),
        (
            _("Configuration"),
            {
                "fields": (
                    "max_attempts",
                    "pass_percentage",
                    "show_results",
                    "shuffle_questions",
                    "shuffle_options",
                    "allow_navigation",
                    "show_timer",
                    "auto_submit",
                    "require_safe_browser",
                    "visible_to_students",
                ),
                "classes": ("collapse",),
            },
        ),
        (_("Status"), {"fields": ("status", "total_points", "created_at", "updated_at")}),
    )

    readonly_fields = ("total_points", "created_at", "updated_at")

    @admin.display(description=_("Effective Status"))
    def get_effective_status(self, obj: Exam) -> str:
        return obj.effective_status()

    @admin.display(description=_("Responses"))
    def response_count(self, obj: Exam) -> int:
        return obj.responses.count()


@admin.register(ExamResponse)
class ExamResponseAdmin(admin.ModelAdmin):
    list_display = (
        "exam",
        "student_id",
        "attempt_number",
        "status",
        "total_score",
        "max_score",
        "percentage",
        "passed",
        "graded",
        "flagged_for_review",
        "submitted_at",
    )
    list_filter = ("status", "graded", "passed", "flagged_for_review", "flag_priority", "late_submission")
    search_fields = ("student_id", "exam__title", "course_id")
    list_select_related = ("exam",)

    def get_readonly_fields(self, request: HttpRequest, obj: Optional[ExamResponse] = None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request: HttpRequest) -> bool:
        return False

    def has_delete_permission(self, request: HttpRequest, obj: Optional[ExamResponse] = None) -> bool:
        return False

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        return super().get_queryset(request).select_related("exam")
