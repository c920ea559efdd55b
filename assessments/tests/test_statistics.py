"""
Tests für die Prüfungsstatistik.
"""

from django.test import TestCase

from assessments.models import ResponseStatus
from assessments.services import (
    ExamDefinitionService,
    GradingService,
    ResponseCollectorService,
    StatisticsService,
)

from .helpers import create_published_exam, essay_question, exam_data, mc_question, question_keys


class ExamStatsTests(TestCase):
    def setUp(self):
        self.definitions = ExamDefinitionService()
        self.responses = ResponseCollectorService()
        self.grading = GradingService()
        self.statistics = StatisticsService()

    def test_exam_without_responses(self):
        exam = create_published_exam(self.definitions, [mc_question(0)])
        stats = self.statistics.compute_exam_stats(exam.id)
        self.assertEqual(stats.total_responses, 0)
        self.assertEqual(stats.grading_progress, 0.0)
        self.assertEqual(stats.pass_rate, 0.0)
        self.assertEqual(stats.completion_rate, 0.0)
        self.assertEqual(stats.average_score, 0.0)
        self.assertEqual(stats.score_std_dev, 0.0)
        self.assertEqual(stats.average_percentage, 0.0)
        self.assertEqual(stats.average_time_spent, 0.0)
        self.assertEqual(stats.status_counts[ResponseStatus.IN_PROGRESS], 0)

    def test_counts_rates_and_distribution(self):
        exam = create_published_exam(
            self.definitions, [mc_question(0), mc_question(1)], pass_percentage=60
        )
        first, second = question_keys(exam)

        full = self.responses.start_attempt(exam.id, "student-1")
        self.responses.submit(full.id, {first: "A", second: "B"})
        half = self.responses.start_attempt(exam.id, "student-2")
        self.responses.submit(half.id, {first: "A", second: "D"})
        self.responses.start_attempt(exam.id, "student-3")
        self.grading.flag_for_review(half.id, "Rückfrage")

        stats = self.statistics.compute_exam_stats(exam.id)
        self.assertEqual(stats.total_responses, 3)
        self.assertEqual(stats.started, 3)
        self.assertEqual(stats.in_progress, 1)
        self.assertEqual(stats.submitted, 2)
        self.assertEqual(stats.graded, 2)
        self.assertEqual(stats.passed, 1)
        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.flagged, 1)
        self.assertEqual(stats.auto_graded, 2)
        self.assertEqual(stats.needs_grading, 0)
        self.assertEqual(stats.unique_students, 3)

        self.assertEqual(stats.grading_progress, 1.0)
        self.assertEqual(stats.pass_rate, 0.5)
        self.assertEqual(stats.completion_rate, 0.6667)

        self.assertEqual(stats.average_score, 7.5)
        self.assertEqual(stats.score_std_dev, 2.5)
        self.assertEqual(stats.highest_score, 10)
        self.assertEqual(stats.lowest_score, 5)
        self.assertEqual(stats.average_percentage, 75.0)
        self.assertEqual(stats.status_counts[ResponseStatus.GRADED], 2)

    def test_pending_manual_grading(self):
        exam = create_published_exam(self.definitions, [essay_question(10)])
        response = self.responses.start_attempt(exam.id, "student-1")
        self.responses.submit(response.id)

        stats = self.statistics.compute_exam_stats(exam.id)
        self.assertEqual(stats.submitted, 1)
        self.assertEqual(stats.needs_grading, 1)
        self.assertEqual(stats.grading_progress, 0.0)
        self.assertEqual(stats.pass_rate, 0.0)

        self.grading.manual_grade(response.id, question_keys(exam)[0], 9)
        stats = self.statistics.compute_exam_stats(exam.id)
        self.assertEqual(stats.grading_progress, 1.0)
        self.assertEqual(stats.pass_rate, 1.0)
        self.assertEqual(stats.to_dict()["highest_score"], 9)

    def test_course_stats(self):
        create_published_exam(self.definitions, [mc_question(0)], title="Klausur A")
        create_published_exam(self.definitions, [mc_question(0)], title="Klausur B")
        self.definitions.create_exam(exam_data(title="Andere", course_id="course-other"), "lecturer-1")

        stats = self.statistics.compute_course_stats("course-stat-1")
        self.assertEqual(sorted(entry.title for entry in stats), ["Klausur A", "Klausur B"])
