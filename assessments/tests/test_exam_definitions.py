"""
Tests für die Verwaltung von Prüfungsdefinitionen.
"""

from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from assessments.exceptions import InvalidStateError, NotFoundError, OutOfWindowError, ValidationError
from assessments.models import Exam, ExamStatus
from assessments.services import ExamDefinitionService, ResponseCollectorService
from assessments.services.exam_definition_service import compute_total_points

from .helpers import (
    create_published_exam,
    essay_question,
    exam_data,
    mc_question,
    question_keys,
    text_question,
    tf_question,
)


class CreateExamTests(TestCase):
    def setUp(self):
        self.definitions = ExamDefinitionService()

    def test_create_exam_sums_question_points(self):
        exam = self.definitions.create_exam(
            exam_data(questions=[mc_question(0), tf_question(points=2), essay_question(points=10)]),
            "lecturer-1",
        )
        self.assertEqual(exam.status, ExamStatus.DRAFT)
        self.assertEqual(exam.instructor_id, "lecturer-1")
        self.assertEqual(exam.total_points, 17)
        self.assertEqual(exam.questions.count(), 3)
        self.assertEqual(
            [q.display_order for q in exam.questions.order_by("display_order")], [1, 2, 3]
        )

    def test_create_exam_reports_every_violation(self):
        now = timezone.now()
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.create_exam(
                exam_data(
                    title="",
                    duration=1,
                    start_time=now,
                    end_time=now - timedelta(hours=1),
                    pass_percentage=120,
                    questions=[{"type": "diagram", "text": ""}],
                ),
                "lecturer-1",
            )
        violations = ctx.exception.violations
        self.assertIn("title is required", violations)
        self.assertTrue(any("duration" in v for v in violations))
        self.assertIn("start_time must be before end_time", violations)
        self.assertIn("pass_percentage must be between 0 and 100", violations)
        self.assertTrue(any("question 1: unknown question type" in v for v in violations))
        self.assertTrue(any("question 1: question text is required" in v for v in violations))
        self.assertFalse(Exam.objects.exists())

    def test_multiple_choice_needs_options_and_valid_index(self):
        question = {"type": "multiple-choice", "text": "?", "options": ["A"], "correct_answer_index": 3}
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.create_exam(exam_data(questions=[question]), "lecturer-1")
        self.assertEqual(len(ctx.exception.violations), 2)

    def test_total_points_helper(self):
        exam = self.definitions.create_exam(exam_data(questions=[mc_question(0, points=4)] * 3), "l")
        self.assertEqual(compute_total_points(exam.questions.all()), 12)

    def test_malformed_question_list_is_reported(self):
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.create_exam(exam_data(questions=[1, mc_question(0), "x"]), "lecturer-1")
        violations = ctx.exception.violations
        self.assertIn("question 1: question must be an object", violations)
        self.assertIn("question 3: question must be an object", violations)
        self.assertEqual(len(violations), 2)

        with self.assertRaises(ValidationError) as ctx:
            self.definitions.create_exam(exam_data(questions="ab"), "lecturer-1")
        self.assertEqual(ctx.exception.violations, ["questions must be a list"])
        self.assertFalse(Exam.objects.exists())

    def test_impossible_datetime_is_reported(self):
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.create_exam(
                exam_data(start_time="2024-02-30T10:00:00", end_time="morgen"), "lecturer-1"
            )
        self.assertEqual(
            ctx.exception.violations,
            ["start_time is not a valid datetime", "end_time is not a valid datetime"],
        )

    def test_iso_strings_are_parsed(self):
        exam = self.definitions.create_exam(
            exam_data(start_time="2030-03-01T09:00:00+01:00", end_time="2030-03-01T11:00:00+01:00"),
            "lecturer-1",
        )
        self.assertEqual(exam.end_time - exam.start_time, timedelta(hours=2))

    def test_exam_data_must_be_an_object(self):
        with self.assertRaises(ValidationError):
            self.definitions.create_exam(["title"], "lecturer-1")


class QuestionMutationTests(TestCase):
    def setUp(self):
        self.definitions = ExamDefinitionService()
        self.exam = self.definitions.create_exam(
            exam_data(questions=[mc_question(0), mc_question(1)]), "lecturer-1"
        )

    def test_add_question_updates_total_points(self):
        self.definitions.add_question(self.exam.id, essay_question(points=10))
        self.exam.refresh_from_db()
        self.assertEqual(self.exam.total_points, 20)
        self.assertEqual(self.exam.questions.count(), 3)

    def test_update_question_points_updates_total(self):
        first = question_keys(self.exam)[0]
        question = self.definitions.update_question(self.exam.id, first, {"points": 8})
        self.exam.refresh_from_db()
        self.assertEqual(question.points, 8)
        self.assertEqual(self.exam.total_points, 13)

    def test_remove_question_renumbers_and_updates_total(self):
        first, second = question_keys(self.exam)
        self.definitions.remove_question(self.exam.id, first)
        self.exam.refresh_from_db()
        self.assertEqual(self.exam.total_points, 5)
        remaining = self.exam.questions.get()
        self.assertEqual(remaining.key, second)
        self.assertEqual(remaining.display_order, 1)

    def test_reorder_questions(self):
        first, second = question_keys(self.exam)
        self.definitions.reorder_questions(self.exam.id, [second])
        self.assertEqual(question_keys(self.exam), [second, first])

    def test_unknown_question_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self.definitions.remove_question(self.exam.id, "00000000-0000-0000-0000-000000000000")

    def test_live_exam_cannot_be_edited(self):
        self.definitions.publish(self.exam.id)
        with self.assertRaises(InvalidStateError):
            self.definitions.add_question(self.exam.id, essay_question())
        with self.assertRaises(InvalidStateError):
            self.definitions.update_exam(self.exam.id, {"title": "Neu"})

    def test_published_exam_before_window_is_editable(self):
        later = timezone.now() + timedelta(days=1)
        exam = self.definitions.create_exam(
            exam_data(
                questions=[mc_question(0)],
                start_time=later,
                end_time=later + timedelta(hours=2),
            ),
            "lecturer-1",
        )
        self.definitions.publish(exam.id)
        self.definitions.add_question(exam.id, tf_question(points=3))
        exam.refresh_from_db()
        self.assertEqual(exam.effective_status(), ExamStatus.PUBLISHED)
        self.assertEqual(exam.total_points, 8)

    def test_update_exam_rejects_unknown_fields(self):
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.update_exam(self.exam.id, {"total_points": 99, "status": "PUBLISHED"})
        self.assertEqual(len(ctx.exception.violations), 2)

    def test_update_exam_applies_patch(self):
        exam = self.definitions.update_exam(self.exam.id, {"title": "Nachklausur", "max_attempts": 2})
        self.assertEqual(exam.title, "Nachklausur")
        self.assertEqual(exam.max_attempts, 2)

    def test_update_question_rejects_unknown_fields(self):
        first = question_keys(self.exam)[0]
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.update_question(self.exam.id, first, {"points": 7, "exam": "x", "score": 1})
        self.assertEqual(
            ctx.exception.violations,
            ["field 'exam' cannot be updated", "field 'score' cannot be updated"],
        )
        self.exam.refresh_from_db()
        self.assertEqual(self.exam.total_points, 10)


class PublishedExamEditTests(TestCase):
    def setUp(self):
        self.definitions = ExamDefinitionService()
        later = timezone.now() + timedelta(days=1)
        exam = self.definitions.create_exam(
            exam_data(
                questions=[essay_question(10)],
                start_time=later,
                end_time=later + timedelta(hours=2),
            ),
            "lecturer-1",
        )
        self.exam = self.definitions.publish(exam.id)

    def assert_unchanged(self):
        self.exam.refresh_from_db()
        self.assertEqual(self.exam.status, ExamStatus.PUBLISHED)
        self.assertEqual(self.exam.questions.count(), 1)
        self.assertEqual(self.exam.total_points, 10)

    def test_removing_last_question_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.remove_question(self.exam.id, question_keys(self.exam)[0])
        self.assertIn("exam has no questions", ctx.exception.violations)
        self.assert_unchanged()

    def test_adding_zero_point_question_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.add_question(self.exam.id, essay_question(points=0))
        self.assertTrue(any("must be worth more than 0 points" in v for v in ctx.exception.violations))
        self.assert_unchanged()

    def test_setting_points_to_zero_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.definitions.update_question(self.exam.id, question_keys(self.exam)[0], {"points": 0})
        self.assert_unchanged()

    def test_valid_edit_keeps_exam_published(self):
        self.definitions.add_question(self.exam.id, mc_question(1, points=4))
        self.exam.refresh_from_db()
        self.assertEqual(self.exam.status, ExamStatus.PUBLISHED)
        self.assertEqual(self.exam.total_points, 14)

    def test_draft_exam_may_be_emptied(self):
        self.definitions.unpublish(self.exam.id)
        self.definitions.remove_question(self.exam.id, question_keys(self.exam)[0])
        self.exam.refresh_from_db()
        self.assertEqual(self.exam.total_points, 0)


class PublishTests(TestCase):
    def setUp(self):
        self.definitions = ExamDefinitionService()

    def test_publish_sets_status_visibility_and_publish_time(self):
        exam = create_published_exam(self.definitions, [mc_question(0), mc_question(1)])
        self.assertEqual(exam.status, ExamStatus.PUBLISHED)
        self.assertTrue(exam.visible_to_students)
        self.assertIsNotNone(exam.publish_time)
        self.assertEqual(exam.effective_status(), ExamStatus.ACTIVE)

    def test_publish_rejects_zero_point_question_by_name(self):
        exam = self.definitions.create_exam(
            exam_data(questions=[mc_question(0), mc_question(1, points=0)]), "lecturer-1"
        )
        zero_point = exam.questions.get(points=0)
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.publish(exam.id)
        self.assertEqual(len(ctx.exception.violations), 1)
        self.assertIn(str(zero_point.id), ctx.exception.violations[0])
        exam.refresh_from_db()
        self.assertEqual(exam.status, ExamStatus.DRAFT)

    def test_publish_lists_all_violations(self):
        exam = self.definitions.create_exam(
            exam_data(questions=[text_question([], points=0), text_question([""], points=0)]),
            "lecturer-1",
        )
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.publish(exam.id)
        # two zero-point questions plus no gradable question
        self.assertEqual(len(ctx.exception.violations), 3)

    def test_publish_without_questions(self):
        exam = self.definitions.create_exam(exam_data(), "lecturer-1")
        with self.assertRaises(ValidationError) as ctx:
            self.definitions.publish(exam.id)
        self.assertIn("exam has no questions", ctx.exception.violations)

    def test_publish_twice_is_invalid_state(self):
        exam = create_published_exam(self.definitions, [essay_question()])
        with self.assertRaises(InvalidStateError):
            self.definitions.publish(exam.id)

    def test_unpublish_before_window(self):
        later = timezone.now() + timedelta(days=1)
        exam = create_published_exam(
            self.definitions,
            [mc_question(0)],
            start_time=later,
            end_time=later + timedelta(hours=1),
        )
        exam = self.definitions.unpublish(exam.id)
        self.assertEqual(exam.status, ExamStatus.DRAFT)
        self.assertFalse(exam.visible_to_students)

    def test_unpublish_live_exam_is_invalid(self):
        exam = create_published_exam(self.definitions, [mc_question(0)])
        with self.assertRaises(InvalidStateError):
            self.definitions.unpublish(exam.id)

    def test_cancel(self):
        exam = create_published_exam(self.definitions, [mc_question(0)])
        exam = self.definitions.cancel(exam.id)
        self.assertEqual(exam.effective_status(), ExamStatus.CANCELLED)
        with self.assertRaises(InvalidStateError):
            self.definitions.cancel(exam.id)


class ExamViewsOfDefinitionTests(TestCase):
    def setUp(self):
        self.definitions = ExamDefinitionService()

    def test_student_exam_requires_open_window(self):
        draft = self.definitions.create_exam(exam_data(questions=[mc_question(0)]), "lecturer-1")
        with self.assertRaises(OutOfWindowError):
            self.definitions.get_student_exam(draft.id)

        published = self.definitions.publish(draft.id)
        self.assertEqual(self.definitions.get_student_exam(published.id).id, draft.id)

    def test_grading_overview_counts(self):
        exam = self.definitions.create_exam(
            exam_data(questions=[mc_question(0), essay_question(points=10), text_question(["Paris"])]),
            "lecturer-1",
        )
        overview = self.definitions.get_exam_for_grading(exam.id).to_dict()
        self.assertEqual(overview["question_count"], 3)
        self.assertEqual(overview["auto_gradable_questions"], 2)
        self.assertEqual(overview["manual_grading_required"], 1)
        self.assertEqual(overview["auto_gradable_points"], 8)
        self.assertEqual(overview["question_type_breakdown"]["essay"], {"count": 1, "points": 10})

    def test_delete_exam_only_without_attempts(self):
        exam = create_published_exam(self.definitions, [mc_question(0)])
        ResponseCollectorService().start_attempt(exam.id, "student-1")
        with self.assertRaises(InvalidStateError):
            self.definitions.delete_exam(exam.id)

        draft = self.definitions.create_exam(exam_data(), "lecturer-1")
        self.definitions.delete_exam(draft.id)
        self.assertFalse(Exam.objects.filter(pk=draft.id).exists())

    def test_unknown_exam(self):
        with self.assertRaises(NotFoundError):
            self.definitions.get_exam("not-a-uuid")
