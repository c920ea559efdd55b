"""
Assessment URL Configuration

URL Structure (mounted under /api/assessments/):
- token/: JWT token endpoints carrying the exam role
- exams/: exam management, questions, grading and statistics (instructors)
- exams/<id>/take|start|eligibility|attempts/: student side of an exam
- responses/<id>/: attempts (answers, submit) and grading of single responses
- courses/<course_id>/stats/: course-wide statistics

Author: DSP Development Team
Version: 1.0.0
"""

from typing import List

from django.urls import URLPattern, path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from . import views
from .serializers import RoleTokenObtainPairSerializer

app_name = "assessments"

urlpatterns: List[URLPattern] = [
    # Authentifizierung
    path(
        "token/",
        TokenObtainPairView.as_view(serializer_class=RoleTokenObtainPairSerializer),
        name="token-obtain-pair",
    ),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),

    # Prüfungsverwaltung
    path("exams/", views.ExamListCreateView.as_view(), name="exam-list"),
    path("exams/available/", views.AvailableExamsView.as_view(), name="exam-available"),
    path("exams/<uuid:exam_id>/", views.ExamDetailView.as_view(), name="exam-detail"),
    path("exams/<uuid:exam_id>/publish/", views.ExamPublishView.as_view(), name="exam-publish"),
    path("exams/<uuid:exam_id>/unpublish/", views.ExamUnpublishView.as_view(), name="exam-unpublish"),
    path("exams/<uuid:exam_id>/cancel/", views.ExamCancelView.as_view(), name="exam-cancel"),

    # Fragen
    path("exams/<uuid:exam_id>/questions/", views.QuestionCreateView.as_view(), name="question-create"),
    path(
        "exams/<uuid:exam_id>/questions/reorder/",
        views.QuestionReorderView.as_view(),
        name="question-reorder",
    ),
    path(
        "exams/<uuid:exam_id>/questions/<uuid:question_id>/",
        views.QuestionDetailView.as_view(),
        name="question-detail",
    ),

    # Bewertung und Statistik
    path("exams/<uuid:exam_id>/grading/", views.ExamGradingView.as_view(), name="exam-grading"),
    path("exams/<uuid:exam_id>/auto-grade/", views.AutoGradeAllView.as_view(), name="exam-auto-grade"),
    path("exams/<uuid:exam_id>/batch-grade/", views.BatchGradeView.as_view(), name="exam-batch-grade"),
    path("exams/<uuid:exam_id>/stats/", views.ExamStatsView.as_view(), name="exam-stats"),
    path("courses/<str:course_id>/stats/", views.CourseStatsView.as_view(), name="course-stats"),

    # Studierende
    path("exams/<uuid:exam_id>/take/", views.StudentExamView.as_view(), name="exam-take"),
    path("exams/<uuid:exam_id>/eligibility/", views.EligibilityView.as_view(), name="exam-eligibility"),
    path("exams/<uuid:exam_id>/start/", views.StartAttemptView.as_view(), name="exam-start"),
    path("exams/<uuid:exam_id>/attempts/", views.AttemptHistoryView.as_view(), name="exam-attempts"),

    # Versuche
    path("responses/<uuid:response_id>/", views.ResponseDetailView.as_view(), name="response-detail"),
    path("responses/<uuid:response_id>/answers/", views.SaveAnswersView.as_view(), name="response-answers"),
    path("responses/<uuid:response_id>/submit/", views.SubmitAttemptView.as_view(), name="response-submit"),
    path("responses/<uuid:response_id>/grade/", views.ManualGradeView.as_view(), name="response-grade"),
    path("responses/<uuid:response_id>/feedback/", views.ResponseFeedbackView.as_view(), name="response-feedback"),
    path("responses/<uuid:response_id>/flag/", views.ResponseFlagView.as_view(), name="response-flag"),
]
