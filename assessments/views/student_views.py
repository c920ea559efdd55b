from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

# Angepasste Importe
from ..permissions import IsAttemptOwner, IsResponseParticipant, Role, identity_of, resolve_role
from ..serializers import (
    ExamListSerializer,
    ExamResponseSerializer,
    SaveAnswersSerializer,
    StudentExamSerializer,
    StudentResponseSerializer,
    SubmitSerializer,
)
from ..services import ExamDefinitionService, ResponseCollectorService

definition_service = ExamDefinitionService()
response_service = ResponseCollectorService()


class AvailableExamsView(APIView):
    """Prüfungen eines Kurses, die gerade bearbeitet werden können."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        course_id = request.query_params.get("course_id")
        if not course_id:
            return Response(
                {"detail": "course_id ist ein Pflichtparameter."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        exams = [exam for exam in definition_service.list_course_exams(course_id) if exam.can_student_take()]
        return Response(ExamListSerializer(exams, many=True).data)


class StudentExamView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, exam_id):
        exam = definition_service.get_student_exam(exam_id)
        return Response(StudentExamSerializer(exam).data)


class EligibilityView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, exam_id):
        result = response_service.check_eligibility(exam_id, identity_of(request.user))
        return Response(result.to_dict())


class StartAttemptView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, exam_id):
        response = response_service.start_attempt(exam_id, identity_of(request.user))
        return Response(StudentResponseSerializer(response).data, status=status.HTTP_201_CREATED)


class AttemptHistoryView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, exam_id):
        exam = definition_service.get_exam(exam_id)
        attempts = response_service.attempt_history(exam.id, identity_of(request.user))
        return Response(StudentResponseSerializer(attempts, many=True).data)


class AttemptMixin:
    permission_classes = [IsAttemptOwner]

    def get_attempt(self, request, response_id):
        response = response_service.get_response(response_id)
        self.check_object_permissions(request, response)
        return response


class SaveAnswersView(AttemptMixin, APIView):
    """Antworten zwischenspeichern; spätere Werte überschreiben frühere."""

    def put(self, request, response_id):
        attempt = self.get_attempt(request, response_id)
        serializer = SaveAnswersSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attempt = response_service.save_answers(attempt.id, serializer.validated_data["answers"])
        return Response(StudentResponseSerializer(attempt).data)

    patch = put


class SubmitAttemptView(AttemptMixin, APIView):
    def post(self, request, response_id):
        attempt = self.get_attempt(request, response_id)
        serializer = SubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attempt = response_service.submit(attempt.id, serializer.validated_data.get("answers"))
        return Response(StudentResponseSerializer(attempt).data)


class ResponseDetailView(APIView):
    """Eigener Versuch für Studierende, vollständige Ansicht für Dozenten der Prüfung."""

    permission_classes = [IsResponseParticipant]

    def get(self, request, response_id):
        response = response_service.get_response(response_id)
        self.check_object_permissions(request, response)
        if resolve_role(request.user) == Role.STUDENT:
            return Response(StudentResponseSerializer(response).data)
        return Response(ExamResponseSerializer(response).data)
