"""
Instructor Views - Exam Assessment and Grading Engine

Views für Dozenten und Admins: Prüfungen anlegen, bearbeiten, veröffentlichen,
Versuche bewerten und Statistiken abrufen.

Exam mutations require the owning lecturer or an admin (IsExamOwnerOrAdmin);
grading a response requires ownership of the response's exam. Service errors
propagate to the project's exception handler, which renders them as
``{"error": {...}}`` payloads.

Author: DSP Development Team
Version: 1.0.0
"""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from ..exceptions import NotFoundError
from ..models import ExamResponse
from ..permissions import IsExamOwnerOrAdmin, IsLecturerOrAdmin, Role, identity_of, resolve_role
from ..serializers import (
    BatchGradeSerializer,
    ExamListSerializer,
    ExamQuestionSerializer,
    ExamResponseSerializer,
    ExamSerializer,
    FeedbackSerializer,
    FlagSerializer,
    ManualGradeSerializer,
    ReorderQuestionsSerializer,
)
from ..services import (
    ExamDefinitionService,
    GradingService,
    ResponseCollectorService,
    StatisticsService,
)

definition_service = ExamDefinitionService()
grading_service = GradingService()
response_service = ResponseCollectorService(grading_service)
statistics_service = StatisticsService(definition_service)


class ExamOwnerMixin:
    """Loads exams and responses and applies the view's object permissions to the exam."""

    permission_classes = [IsExamOwnerOrAdmin]

    def get_exam(self, request, exam_id):
        exam = definition_service.get_exam(exam_id)
        self.check_object_permissions(request, exam)
        return exam

    def get_response(self, request, response_id):
        response = response_service.get_response(response_id)
        self.check_object_permissions(request, response.exam)
        return response


# --- Exams ---

class ExamListCreateView(APIView):
    """
    GET: Prüfungen eines Kurses (``?course_id=``), Dozenten sehen nur eigene.
    POST: Neue Prüfung als Entwurf anlegen, optional mit Fragen.
    """

    permission_classes = [IsLecturerOrAdmin]

    def get(self, request):
        course_id = request.query_params.get("course_id")
        if not course_id:
            return Response(
                {"detail": "course_id ist ein Pflichtparameter."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        exams = definition_service.list_course_exams(course_id)
        if resolve_role(request.user) == Role.LECTURER:
            exams = exams.filter(instructor_id=identity_of(request.user))
        return Response(ExamListSerializer(exams, many=True).data)

    def post(self, request):
        exam = definition_service.create_exam(request.data, identity_of(request.user))
        return Response(ExamSerializer(exam).data, status=status.HTTP_201_CREATED)


class ExamDetailView(ExamOwnerMixin, APIView):
    def get(self, request, exam_id):
        return Response(ExamSerializer(self.get_exam(request, exam_id)).data)

    def patch(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        exam = definition_service.update_exam(exam.id, request.data)
        return Response(ExamSerializer(exam).data)

    def delete(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        definition_service.delete_exam(exam.id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ExamPublishView(ExamOwnerMixin, APIView):
    def post(self, request, exam_id):
        exam = definition_service.publish(self.get_exam(request, exam_id).id)
        return Response(ExamSerializer(exam).data)


class ExamUnpublishView(ExamOwnerMixin, APIView):
    def post(self, request, exam_id):
        exam = definition_service.unpublish(self.get_exam(request, exam_id).id)
        return Response(ExamSerializer(exam).data)


class ExamCancelView(ExamOwnerMixin, APIView):
    def post(self, request, exam_id):
        exam = definition_service.cancel(self.get_exam(request, exam_id).id)
        return Response(ExamSerializer(exam).data)


# --- Questions ---

class QuestionCreateView(ExamOwnerMixin, APIView):
    def post(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        question = definition_service.add_question(exam.id, request.data)
        return Response(ExamQuestionSerializer(question).data, status=status.HTTP_201_CREATED)


class QuestionDetailView(ExamOwnerMixin, APIView):
    def patch(self, request, exam_id, question_id):
        exam = self.get_exam(request, exam_id)
        question = definition_service.update_question(exam.id, question_id, request.data)
        return Response(ExamQuestionSerializer(question).data)

    def delete(self, request, exam_id, question_id):
        exam = self.get_exam(request, exam_id)
        exam = definition_service.remove_question(exam.id, question_id)
        return Response(ExamSerializer(exam).data)


class QuestionReorderView(ExamOwnerMixin, APIView):
    def post(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        serializer = ReorderQuestionsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        questions = definition_service.reorder_questions(
            exam.id, serializer.validated_data["question_ids"]
        )
        return Response(ExamQuestionSerializer(questions, many=True).data)


# --- Grading ---

class ExamGradingView(ExamOwnerMixin, APIView):
    """Prüfung mit Bewertungsübersicht, vollständigen Fragen und allen Versuchen."""

    def get(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        overview = definition_service.get_exam_for_grading(exam.id)
        responses = exam.responses.select_related("exam").order_by("student_id", "attempt_number")

        status_filter = request.query_params.get("status")
        if status_filter:
            responses = responses.filter(status=status_filter)
        if request.query_params.get("flagged") == "true":
            responses = responses.filter(flagged_for_review=True)

        data = overview.to_dict()
        data["questions"] = ExamQuestionSerializer(overview.questions, many=True).data
        data["responses"] = ExamResponseSerializer(responses, many=True).data
        return Response(data)


class AutoGradeAllView(ExamOwnerMixin, APIView):
    def post(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        result = grading_service.auto_grade_all(exam.id)
        return Response(result.to_dict())


class BatchGradeView(ExamOwnerMixin, APIView):
    """Eine Operation für mehrere Versuche; Fehler werden pro Versuch gemeldet."""

    def post(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        serializer = BatchGradeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        operation = serializer.to_operation()

        requested = serializer.validated_data["response_ids"]
        own_ids = {
            str(pk) for pk in ExamResponse.objects.filter(exam=exam).values_list("id", flat=True)
        }
        result = grading_service.batch_grade(
            [rid for rid in requested if rid in own_ids], operation, identity_of(request.user)
        )
        for rid in requested:
            if rid not in own_ids:
                result.failed[rid] = NotFoundError("Response", rid).to_dict()
        return Response(result.to_dict())


class ManualGradeView(ExamOwnerMixin, APIView):
    def post(self, request, response_id):
        response = self.get_response(request, response_id)
        serializer = ManualGradeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        response = grading_service.manual_grade(
            response.id,
            data["question_id"],
            data["score"],
            data.get("feedback") or None,
            identity_of(request.user),
        )
        return Response(ExamResponseSerializer(response).data)


class ResponseFeedbackView(ExamOwnerMixin, APIView):
    def post(self, request, response_id):
        response = self.get_response(request, response_id)
        serializer = FeedbackSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        response = grading_service.set_feedback(
            response.id, serializer.validated_data["feedback"], identity_of(request.user)
        )
        return Response(ExamResponseSerializer(response).data)


class ResponseFlagView(ExamOwnerMixin, APIView):
    def post(self, request, response_id):
        response = self.get_response(request, response_id)
        serializer = FlagSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        response = grading_service.flag_for_review(
            response.id,
            serializer.validated_data["reason"],
            serializer.validated_data["priority"],
        )
        return Response(ExamResponseSerializer(response).data)

    def delete(self, request, response_id):
        response = grading_service.unflag(self.get_response(request, response_id).id)
        return Response(ExamResponseSerializer(response).data)


# --- Statistics ---

class ExamStatsView(ExamOwnerMixin, APIView):
    def get(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        return Response(statistics_service.compute_exam_stats(exam.id).to_dict())


class CourseStatsView(APIView):
    permission_classes = [IsLecturerOrAdmin]

    def get(self, request, course_id):
        stats = statistics_service.compute_course_stats(course_id)
        if resolve_role(request.user) == Role.LECTURER:
            own = set(
                str(pk)
                for pk in definition_service.list_course_exams(course_id)
                .filter(instructor_id=identity_of(request.user))
                .values_list("id", flat=True)
            )
            stats = [entry for entry in stats if entry.exam_id in own]
        return Response({
            "course_id": course_id,
            "exams": [entry.to_dict() for entry in stats],
        })
