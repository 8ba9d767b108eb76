"""
Tests for lexical text metrics.
"""

import math

import pytest

from evaluation.text_metrics import (
    bleu_1,
    calculate_all,
    groundedness,
    lcs_length,
    rouge_1,
    rouge_l,
    tokenize,
)
from shared.numeric import round_half_up


class TestTokenize:
    """Test tokenization rules."""

    def test_lowercases_and_strips_punctuation(self):
        assert tokenize("¡Hola, Mundo!") == ["hola", "mundo"]

    def test_keeps_spanish_letters(self):
        assert tokenize("El niño y la canción") == ["el", "niño", "y", "la", "canción"]

    @pytest.mark.parametrize("text", ["", None, "   ", "?!."])
    def test_empty_inputs(self, text):
        assert tokenize(text) == []


class TestRouge:
    """Test ROUGE-1 and ROUGE-L."""

    @pytest.mark.parametrize(
        "text",
        [
            "los bucles repiten acciones",
            "Scratch usa bloques de colores",
            "a",
        ],
    )
    def test_rouge1_identity(self, text):
        score = rouge_1(text, text)
        assert (score.precision, score.recall, score.f1) == (1.0, 1.0, 1.0)

    def test_rouge1_disjoint(self):
        score = rouge_1("perro ladra", "gato maulla")
        assert score.f1 == 0.0

    def test_rouge1_empty_is_zero(self):
        score = rouge_1("", "algo de texto")
        assert (score.precision, score.recall, score.f1) == (0.0, 0.0, 0.0)

    def test_rouge1_uses_distinct_tokens(self):
        # "el" repeated counts once
        score = rouge_1("el el el gato", "el gato")
        assert score.precision == 1.0
        assert score.recall == 1.0

    def test_rougeL_partial_match(self):
        score = rouge_l("a b c d", "a c d")
        assert score.precision == 0.75
        assert score.recall == 1.0
        assert score.f1 == 0.86

    def test_rouge1_rounds_half_up(self):
        # 1 of 8 generated tokens overlaps: precision 0.125
        score = rouge_1("a b c d e f g h", "a")
        assert score.precision == 0.13
        assert score.recall == 1.0

    def test_rougeL_order_matters(self):
        forward = rouge_l("uno dos tres", "uno dos tres")
        backward = rouge_l("tres dos uno", "uno dos tres")
        assert forward.f1 == 1.0
        assert backward.f1 < forward.f1


class TestLCS:
    """Test the LCS dynamic program."""

    def test_known_value(self):
        assert lcs_length(list("abcbdab"), list("bdcaba")) == 4

    def test_empty(self):
        assert lcs_length([], ["a"]) == 0
        assert lcs_length(["a"], []) == 0

    @pytest.mark.parametrize(
        "gen,ref",
        [
            ("el gato come", "el perro come pescado"),
            ("a b a b a b", "b a"),
            ("uno", "uno dos tres cuatro"),
            ("", "algo"),
        ],
    )
    def test_bounded_by_shorter_sequence(self, gen, ref):
        g, r = tokenize(gen), tokenize(ref)
        assert 0 <= lcs_length(g, r) <= min(len(g), len(r))


class TestBleu:
    """Test simplified BLEU-1."""

    def test_identical(self):
        assert bleu_1("el gato come", "el gato come") == 1.0

    def test_brevity_penalty(self):
        expected = round_half_up(math.exp(1 - 4 / 2), 2)
        assert bleu_1("el gato", "el gato come pescado") == expected

    def test_empty_generation(self):
        assert bleu_1("", "referencia") == 0.0

    def test_longer_generation_has_no_penalty(self):
        assert bleu_1("el gato come mucho", "el gato") == 0.5


class TestGroundedness:
    """Test groundedness and coverage."""

    def test_short_tokens_are_ignored(self):
        result = groundedness(
            "scratch usa bloques de colores",
            "scratch tiene bloques y sprites",
        )
        assert result.groundedness == 0.4
        assert result.coverage == 0.4

    def test_empty_inputs(self):
        result = groundedness("", "")
        assert (result.groundedness, result.coverage) == (0.0, 0.0)

    def test_bounded(self):
        result = groundedness("scratch scratch scratch", "scratch")
        assert 0.0 <= result.groundedness <= 1.0
        assert 0.0 <= result.coverage <= 1.0


class TestCalculateAll:
    """Test the combined metric bundle."""

    def test_identical_texts(self):
        metrics = calculate_all("los bucles repiten", "los bucles repiten")
        assert metrics.overall == 1.0
        assert metrics.groundedness is None

    def test_weights(self):
        metrics = calculate_all("el gato come", "el gato come pescado fresco")
        expected = round_half_up(
            0.3 * metrics.rouge1.f1 + 0.3 * metrics.rougeL.f1 + 0.4 * metrics.bleu, 2
        )
        assert metrics.overall == expected

    def test_includes_groundedness_with_rag(self):
        metrics = calculate_all("bloques scratch", "bloques", rag_context="scratch bloques")
        assert metrics.groundedness is not None
        assert metrics.groundedness.groundedness == 1.0
