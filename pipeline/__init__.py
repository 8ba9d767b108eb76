"""
Lesson generation pipeline: context assembly, budget, generation, evaluation.
"""

from .lesson_pipeline import LessonGenerationResult, LessonPipeline, LessonRequest, parse_lesson

__all__ = ["LessonGenerationResult", "LessonPipeline", "LessonRequest", "parse_lesson"]
