"""
Statistics Service

Read-only aggregation over the responses of an exam. One pass over the
responses yields the status counts, rates and score distribution used by
the instructor dashboard.

Ratios are fractions in [0, 1] rounded to 4 places; averages are rounded
to 2 places. An exam without responses yields 0 for every rate and average.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
import statistics
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from ..models import Exam, ExamResponse, ResponseStatus
from .exam_definition_service import ExamDefinitionService

logger = logging.getLogger(__name__)


def _ratio(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole else 0.0


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


@dataclass
class ExamStats:
    """Aggregated figures for one exam."""

    exam_id: str
    title: str
    total_points: int
    pass_percentage: float

    total_responses: int = 0
    started: int = 0
    in_progress: int = 0
    submitted: int = 0
    graded: int = 0
    abandoned: int = 0
    passed: int = 0
    failed: int = 0
    flagged: int = 0
    auto_graded: int = 0
    needs_grading: int = 0
    late_submissions: int = 0
    unique_students: int = 0

    grading_progress: float = 0.0
    pass_rate: float = 0.0
    completion_rate: float = 0.0

    average_score: float = 0.0
    score_std_dev: float = 0.0
    highest_score: int = 0
    lowest_score: int = 0
    average_percentage: float = 0.0
    average_time_spent: float = 0.0

    status_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class StatisticsService:
    def __init__(self, definition_service: ExamDefinitionService = None):
        self.logger = logger
        self.definitions = definition_service or ExamDefinitionService()

    def compute_exam_stats(self, exam_id) -> ExamStats:
        exam = self.definitions.get_exam(exam_id)
        return self._aggregate(exam, ExamResponse.objects.filter(exam=exam))

    def compute_course_stats(self, course_id: str) -> List[ExamStats]:
        exams = list(self.definitions.list_course_exams(course_id))
        by_exam = {exam.id: [] for exam in exams}
        for response in ExamResponse.objects.filter(exam__in=exams):
            by_exam[response.exam_id].append(response)
        return [self._aggregate(exam, by_exam[exam.id]) for exam in exams]

    def _aggregate(self, exam: Exam, responses) -> ExamStats:
        stats = ExamStats(
            exam_id=str(exam.id),
            title=exam.title,
            total_points=exam.total_points,
            pass_percentage=exam.pass_percentage,
            status_counts={status: 0 for status in ResponseStatus.values},
        )
        graded_scores = []
        graded_percentages = []
        time_spent = []
        students = set()

        for response in responses:
            stats.total_responses += 1
            stats.status_counts[response.status] += 1
            students.add(response.student_id)

            if response.flagged_for_review:
                stats.flagged += 1
            if response.status == ResponseStatus.IN_PROGRESS:
                stats.in_progress += 1
            elif response.status == ResponseStatus.ABANDONED:
                stats.abandoned += 1
            else:
                stats.submitted += 1
                if response.auto_graded:
                    stats.auto_graded += 1
                if response.late_submission:
                    stats.late_submissions += 1
                if response.time_spent is not None:
                    time_spent.append(response.time_spent)
                if response.graded:
                    stats.graded += 1
                    graded_scores.append(response.total_score)
                    graded_percentages.append(response.percentage)
                    if response.passed:
                        stats.passed += 1
                    else:
                        stats.failed += 1
                else:
                    stats.needs_grading += 1

        stats.started = stats.total_responses
        stats.unique_students = len(students)
        stats.grading_progress = _ratio(stats.graded, stats.submitted)
        stats.pass_rate = _ratio(stats.passed, stats.graded)
        stats.completion_rate = _ratio(stats.submitted, stats.started)

        if graded_scores:
            stats.average_score = _average(graded_scores)
            stats.score_std_dev = round(statistics.pstdev(graded_scores), 2)
            stats.highest_score = max(graded_scores)
            stats.lowest_score = min(graded_scores)
        stats.average_percentage = _average(graded_percentages)
        stats.average_time_spent = _average(time_spent)

        self.logger.debug(
            f"Stats for exam {exam.id}: {stats.total_responses} responses, "
            f"{stats.graded}/{stats.submitted} graded"
        )
        return stats
