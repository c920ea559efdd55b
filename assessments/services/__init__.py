"""
Assessment services: exam definitions, attempts, grading and statistics.
"""

from .exam_definition_service import ExamDefinitionService
from .grading_service import BatchGradeOperation, GradingService
from .response_service import ResponseCollectorService
from .statistics_service import StatisticsService

__all__ = [
    "BatchGradeOperation",
    "ExamDefinitionService",
    "GradingService",
    "ResponseCollectorService",
    "StatisticsService",
]
