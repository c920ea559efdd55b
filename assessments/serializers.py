"""
Assessment Serializers

Serializers for the exam engine's HTTP layer. Output serializers render the
models; input serializers only check the request shape; business rules are
enforced by the services so every violation is reported at once.

Serializers:
- RoleTokenObtainPairSerializer: JWT token carrying the resolved exam role
- ExamQuestionSerializer / StudentExamQuestionSerializer: full question vs.
  question without answer key
- ExamSerializer / StudentExamSerializer / ExamListSerializer
- ExamResponseSerializer / StudentResponseSerializer
- Input: ManualGradeSerializer, FeedbackSerializer, FlagSerializer,
  BatchGradeSerializer, SaveAnswersSerializer, SubmitSerializer,
  ReorderQuestionsSerializer

Author: DSP Development Team
Version: 1.0.0
"""

from typing import Any, Dict

from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.tokens import RefreshToken

from .models import Exam, ExamQuestion, ExamResponse, FlagPriority
from .permissions import identity_of, resolve_role
from .services.grading_service import BATCH_OPERATION_KINDS, BatchGradeOperation


class RoleTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    JWT token serializer adding the engine role to token and response.

    The role is informational for the frontend; the API resolves it from the
    user again on every request.
    """

    @classmethod
    def get_token(cls, user) -> RefreshToken:
        token = super().get_token(user)
        token["username"] = user.get_username()
        token["role"] = str(resolve_role(user).value)
        return token

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        data = super().validate(attrs)
        data.update({
            "user_id": identity_of(self.user),
            "username": self.user.get_username(),
            "role": str(resolve_role(self.user).value),
        })
        return data


# --- Questions ---

class ExamQuestionSerializer(serializers.ModelSerializer):
    type = serializers.CharField(source="question_type", read_only=True)
    can_auto_grade = serializers.BooleanField(read_only=True)

    class Meta:
        model = ExamQuestion
        fields = [
            "id",
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
            "display_order",
            "can_auto_grade",
        ]


class StudentExamQuestionSerializer(serializers.ModelSerializer):
    """Question as shown while taking the exam, answer key removed."""

    type = serializers.CharField(source="question_type", read_only=True)

    class Meta:
        model = ExamQuestion
        fields = [
            "id",
            "type",
            "text",
            "options",
            "points",
            "required",
            "max_length",
            "time_limit",
            "display_order",
        ]


# --- Exams ---

class ExamListSerializer(serializers.ModelSerializer):
    status = serializers.SerializerMethodField()
    question_count = serializers.SerializerMethodField()

    class Meta:
        model = Exam
        fields = [
            "id",
            "course_id",
            "instructor_id",
            "title",
            "duration",
            "start_time",
            "end_time",
            "total_points",
            "pass_percentage",
            "max_attempts",
            "visible_to_students",
            "status",
            "question_count",
        ]

    def get_status(self, obj):
        return obj.effective_status()

    def get_question_count(self, obj):
        return obj.questions.count()


class ExamSerializer(ExamListSerializer):
    questions = serializers.SerializerMethodField()

    class Meta(ExamListSerializer.Meta):
        fields = ExamListSerializer.Meta.fields + [
            "description",
            "instructions",
            "publish_time",
            "show_results",
            "shuffle_questions",
            "shuffle_options",
            "allow_navigation",
            "show_timer",
            "auto_submit",
            "require_safe_browser",
            "created_at",
            "updated_at",
            "questions",
        ]

    def get_questions(self, obj):
        return ExamQuestionSerializer(obj.questions.order_by("display_order"), many=True).data


class StudentExamSerializer(serializers.ModelSerializer):
    questions = serializers.SerializerMethodField()

    class Meta:
        model = Exam
        fields = [
            "id",
            "course_id",
            "title",
            "description",
            "instructions",
            "duration",
            "start_time",
            "end_time",
            "total_points",
            "pass_percentage",
            "max_attempts",
            "shuffle_questions",
            "shuffle_options",
            "allow_navigation",
            "show_timer",
            "auto_submit",
            "require_safe_browser",
            "questions",
        ]

    def get_questions(self, obj):
        return StudentExamQuestionSerializer(obj.questions.order_by("display_order"), many=True).data


# --- Responses ---

class ExamResponseSerializer(serializers.ModelSerializer):
    exam_title = serializers.CharField(source="exam.title", read_only=True)
    needs_grading = serializers.BooleanField(read_only=True)

    class Meta:
        model = ExamResponse
        fields = [
            "id",
            "exam",
            "exam_title",
            "student_id",
            "course_id",
            "attempt_number",
            "status",
            "answers",
            "question_scores",
            "question_feedback",
            "manual_score_keys",
            "started_at",
            "submitted_at",
            "time_spent",
            "total_score",
            "max_score",
            "percentage",
            "passed",
            "graded",
            "auto_graded",
            "needs_grading",
            "instructor_feedback",
            "graded_by",
            "graded_at",
            "flagged_for_review",
            "flag_reason",
            "flag_priority",
            "late_submission",
        ]


RESULT_FIELDS = (
    "question_scores",
    "question_feedback",
    "total_score",
    "percentage",
    "passed",
    "instructor_feedback",
)


class StudentResponseSerializer(serializers.ModelSerializer):
    """A student's own attempt; results are withheld unless the exam shows them."""

    exam_title = serializers.CharField(source="exam.title", read_only=True)

    class Meta:
        model = ExamResponse
        fields = [
            "id",
            "exam",
            "exam_title",
            "attempt_number",
            "status",
            "answers",
            "started_at",
            "submitted_at",
            "time_spent",
            "max_score",
            "graded",
            "late_submission",
        ] + list(RESULT_FIELDS)

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if not (instance.exam.show_results and instance.graded):
            for name in RESULT_FIELDS:
                data[name] = None
        return data


# --- Input ---

class ManualGradeSerializer(serializers.Serializer):
    question_id = serializers.CharField()
    score = serializers.IntegerField()
    feedback = serializers.CharField(required=False, allow_blank=True, default="")


class FeedbackSerializer(serializers.Serializer):
    feedback = serializers.CharField(allow_blank=True)


class FlagSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    priority = serializers.ChoiceField(choices=FlagPriority.choices, default=FlagPriority.MEDIUM)


class BatchGradeSerializer(serializers.Serializer):
    response_ids = serializers.ListField(child=serializers.CharField(), allow_empty=False)
    operation = serializers.ChoiceField(choices=BATCH_OPERATION_KINDS)
    question_id = serializers.CharField(required=False)
    score = serializers.IntegerField(required=False)
    feedback = serializers.CharField(required=False, allow_blank=True)
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    priority = serializers.ChoiceField(choices=FlagPriority.choices, default=FlagPriority.MEDIUM)

    def to_operation(self) -> BatchGradeOperation:
        data = self.validated_data
        return BatchGradeOperation(
            kind=data["operation"],
            question_id=data.get("question_id"),
            score=data.get("score"),
            feedback=data.get("feedback"),
            reason=data.get("reason", ""),
            priority=data.get("priority", FlagPriority.MEDIUM),
        )


class SaveAnswersSerializer(serializers.Serializer):
    answers = serializers.DictField(child=serializers.CharField(allow_blank=True, allow_null=True))


class SubmitSerializer(serializers.Serializer):
    answers = serializers.DictField(
        child=serializers.CharField(allow_blank=True, allow_null=True), required=False
    )


class ReorderQuestionsSerializer(serializers.Serializer):
    question_ids = serializers.ListField(child=serializers.CharField(), allow_empty=False)
