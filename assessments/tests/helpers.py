"""
Gemeinsame Testdaten für das Prüfungssystem.
"""

from datetime import timedelta

from django.utils import timezone

from assessments.models import Exam


def exam_data(**overrides):
    """Exam whose window is open right now (started an hour ago, ends in an hour)."""
    now = timezone.now()
    data = {
        "title": "Klausur Statistik I",
        "course_id": "course-stat-1",
        "description": "Abschlussklausur",
        "duration": 60,
        "start_time": now - timedelta(hours=1),
        "end_time": now + timedelta(hours=1),
        "pass_percentage": 60.0,
        "max_attempts": 1,
    }
    data.update(overrides)
    return data


def mc_question(correct_index, points=5, text="Welche Option ist richtig?"):
    return {
        "type": "multiple-choice",
        "text": text,
        "options": ["A", "B", "C", "D"],
        "correct_answer_index": correct_index,
        "points": points,
    }


def tf_question(correct_answer="true", points=2, text="Die Erde ist rund."):
    return {"type": "true-false", "text": text, "correct_answer": correct_answer, "points": points}


def text_question(acceptable, points=3, case_sensitive=False, text="Hauptstadt von Frankreich?"):
    return {
        "type": "text",
        "text": text,
        "acceptable_answers": acceptable,
        "case_sensitive": case_sensitive,
        "points": points,
    }


def essay_question(points=10, text="Erläutern Sie den zentralen Grenzwertsatz."):
    return {"type": "essay", "text": text, "points": points}


def create_published_exam(definitions, questions, instructor_id="lecturer-1", **overrides):
    exam = definitions.create_exam(exam_data(questions=questions, **overrides), instructor_id)
    return definitions.publish(exam.id)


def end_exam(exam, minutes_ago=1):
    """Moves the exam's end time into the past without going through the service."""
    end_time = timezone.now() - timedelta(minutes=minutes_ago)
    Exam.objects.filter(pk=exam.pk).update(end_time=end_time)
    exam.refresh_from_db()
    return exam


def question_keys(exam):
    return [question.key for question in exam.questions.order_by("display_order")]
