"""
Tests for heuristic lesson evaluation.
"""

import pytest

from evaluation.lesson_evaluator import LessonEvaluator

from .factories import make_passing_lesson, make_quiz


@pytest.fixture
def evaluator():
    return LessonEvaluator()


def words(n):
    return " ".join(["palabra"] * n)


class TestDimensions:
    """Test each scoring dimension in isolation."""

    def test_faithfulness_full_match(self, evaluator, curriculum):
        lesson = {
            "contenido": "En esta lección aprenderemos sobre condicionales usando Scratch"
        }
        result = evaluator.evaluate(lesson, curriculum)

        assert result.scores.faithfulness == 100
        assert result.details.faithfulness.topic_words == 4
        assert result.details.faithfulness.matched_words == 4

    def test_faithfulness_without_topic(self, evaluator):
        result = evaluator.evaluate({"contenido": "texto"}, {})
        assert result.scores.faithfulness == 0

    def test_relevance_is_boosted_and_capped(self, evaluator, curriculum):
        # 4 of 5 context terms -> 80% match -> 120 capped at 100
        lesson = {"contenido": "scratch pensamiento computacional bloques"}
        result = evaluator.evaluate(lesson, curriculum)

        assert result.details.relevance.context_terms == 5
        assert result.details.relevance.matched_terms == 4
        assert result.scores.relevance == 100

    def test_relevance_uses_rag_context(self, evaluator):
        lesson = {"contenido": "Los sprites se mueven"}
        result = evaluator.evaluate(lesson, {}, rag_context="sprites escenario")
        # 1 of 2 terms -> 50% * 1.5
        assert result.scores.relevance == 75

    @pytest.mark.parametrize(
        "word_count,expected",
        # 40 words -> 2.5, rounded half up
        [(800, 100), (1200, 100), (600, 80), (450, 60), (160, 10), (40, 3), (0, 0)],
    )
    def test_length(self, evaluator, word_count, expected):
        result = evaluator.evaluate({"contenido": words(word_count)}, {})
        assert result.scores.length == expected
        assert result.word_count == word_count

    def test_full_structure(self, evaluator):
        lesson = {
            "contenido": (
                "# Título\n\n**uno** **dos** **tres**\n\n"
                "Ejemplo: un gato que salta.\nImagina que eres un robot."
            ),
            "quiz": make_quiz(),
        }
        result = evaluator.evaluate(lesson, {})

        assert result.scores.structure == 100
        assert result.has_examples is True
        assert result.has_quiz is True

    def test_structure_accepts_options_key(self, evaluator):
        lesson = {"contenido": "texto", "quiz": make_quiz(key="options")}
        result = evaluator.evaluate(lesson, {})
        assert result.details.structure.quiz_has_options is True

    def test_structure_short_quiz(self, evaluator):
        lesson = {"contenido": "## Subtítulo\n```\nbloque\n```", "quiz": make_quiz(2, 3)}
        result = evaluator.evaluate(lesson, {})

        details = result.details.structure
        assert details.has_subtitles is True
        assert details.has_examples is True
        assert details.has_quiz is False
        assert details.quiz_has_options is False

    def test_prohibited_terms(self, evaluator):
        lesson = {"contenido": "Usa printf() para imprimir en la terminal y gcc para compilar"}
        result = evaluator.evaluate(lesson, {})

        assert result.scores.no_hallucination == 50
        assert "printf" in result.details.no_hallucination.prohibited_found
        assert "gcc" in result.details.no_hallucination.prohibited_found

    def test_hallucination_floor(self, evaluator):
        lesson = {"contenido": "printf scanf gcc #include stdlib"}
        result = evaluator.evaluate(lesson, {})
        assert result.scores.no_hallucination == 0


class TestOverall:
    """Test the weighted overall score and pass decision."""

    def test_weights_sum_to_one(self, evaluator):
        assert sum(evaluator.weights.values()) == pytest.approx(1.0)

    def test_invalid_weights(self):
        with pytest.raises(ValueError, match="sum to 1.0"):
            LessonEvaluator(
                weights={
                    "faithfulness": 0.5,
                    "relevance": 0.5,
                    "length": 0.5,
                    "structure": 0.0,
                    "no_hallucination": 0.0,
                }
            )

    def test_missing_weight_key(self):
        with pytest.raises(ValueError, match="cover exactly"):
            LessonEvaluator(weights={"faithfulness": 1.0})

    def test_empty_lesson(self, evaluator):
        result = evaluator.evaluate({}, {})
        # only the no-hallucination dimension scores
        assert result.scores.overall == 15
        assert result.passed is False

    def test_passing_lesson(self, evaluator, curriculum):
        result = evaluator.evaluate(make_passing_lesson(), curriculum)

        assert result.scores.faithfulness == 100
        assert result.scores.relevance == 100
        assert result.scores.length == 100
        assert result.scores.structure == 100
        assert result.scores.no_hallucination == 100
        assert result.scores.overall == 100
        assert result.passed is True

    @pytest.mark.parametrize(
        "lesson",
        [
            {},
            {"contenido": "printf " * 900},
            {"contenido": "# T\nEjemplo Imagina", "quiz": make_quiz(5, 6)},
        ],
    )
    def test_overall_in_range(self, evaluator, curriculum, lesson):
        overall = evaluator.evaluate(lesson, curriculum).scores.overall
        assert 0 <= overall <= 100

    def test_custom_threshold(self, curriculum):
        strict = LessonEvaluator(pass_threshold=101)
        assert strict.evaluate(make_passing_lesson(), curriculum).passed is False

    def test_to_dict(self, evaluator, curriculum):
        data = evaluator.evaluate(make_passing_lesson(), curriculum).to_dict()
        assert data["scores"]["overall"] == 100
        assert data["details"]["length"]["min_required"] == 800
        assert data["evaluation_id"] is None


class TestPersistence:
    """Test evaluate_and_save and get_stats."""

    def test_evaluate_and_save(self, memory_store, curriculum):
        evaluator = LessonEvaluator(store=memory_store)
        result = evaluator.evaluate_and_save(
            "lesson-1", make_passing_lesson(), curriculum, session_id="s-1", user_id="u-1"
        )

        records = memory_store.list_evaluations()
        assert result.evaluation_id is not None
        assert len(records) == 1
        assert records[0].id == result.evaluation_id
        assert records[0].lesson_id == "lesson-1"
        assert records[0].session_id == "s-1"
        assert records[0].scores["overall"] == 100

    def test_save_requires_store(self, evaluator, curriculum):
        with pytest.raises(RuntimeError):
            evaluator.evaluate_and_save("lesson-1", make_passing_lesson(), curriculum)

    def test_stats_empty(self, memory_store):
        stats = LessonEvaluator(store=memory_store).get_stats()
        assert stats.total_evaluations == 0
        assert stats.avg_score is None
        assert stats.pass_rate == 0

    def test_stats(self, store, curriculum):
        evaluator = LessonEvaluator(store=store)
        evaluator.evaluate_and_save("lesson-1", make_passing_lesson(), curriculum)
        evaluator.evaluate_and_save("lesson-2", {}, curriculum)

        stats = evaluator.get_stats(days=7)
        assert stats.total_evaluations == 2
        assert stats.passed_count == 1
        assert stats.pass_rate == 50
        assert stats.min_score == 15
        assert stats.max_score == 100
        assert stats.avg_score == pytest.approx(57.5)
        assert stats.dimension_means["no_hallucination"] == 100.0
