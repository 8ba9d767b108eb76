"""
Lexical text metrics for evaluating generated lessons.

Implements:
- ROUGE-1: unigram set overlap
- ROUGE-L: longest common subsequence over tokens
- BLEU-1: unigram precision with brevity penalty
- Groundedness / coverage against a RAG context

All functions are pure. Empty or missing text tokenizes to an empty
sequence and yields zero scores.
"""

import math
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from shared.numeric import round_half_up

_NON_WORD = re.compile(r"[^\w\sáéíóúñü]")

MIN_GROUNDED_TOKEN_LEN = 4


@dataclass
class RougeScore:
    """Precision/recall/F1 triple, rounded to 2 decimals."""

    precision: float
    recall: float
    f1: float


@dataclass
class GroundednessScore:
    """How much of the output comes from the context, and vice versa."""

    groundedness: float
    coverage: float


@dataclass
class CombinedMetrics:
    """All lexical metrics for one generated/reference pair."""

    rouge1: RougeScore
    rougeL: RougeScore
    bleu: float
    overall: float
    groundedness: Optional[GroundednessScore] = None


def tokenize(text: Optional[str]) -> List[str]:
    """
    Lowercase, strip punctuation and split into word tokens.

    Accented Spanish vowels, ñ and ü are kept as word characters.
    """
    if not text:
        return []
    cleaned = _NON_WORD.sub(" ", text.lower())
    return [t for t in cleaned.split() if t]


def lcs_length(a: Sequence[str], b: Sequence[str]) -> int:
    """
    Length of the longest common subsequence of two token sequences.

    Classic O(m*n) dynamic programming table.
    """
    m, n = len(a), len(b)
    if m == 0 or n == 0:
        return 0

    dp = np.zeros((m + 1, n + 1), dtype=np.int64)
    for i in range(1, m + 1):
        ai = a[i - 1]
        for j in range(1, n + 1):
            if ai == b[j - 1]:
                dp[i, j] = dp[i - 1, j - 1] + 1
            else:
                dp[i, j] = max(dp[i - 1, j], dp[i, j - 1])

    return int(dp[m, n])


def _prf(matches: int, gen_size: int, ref_size: int) -> RougeScore:
    precision = matches / gen_size if gen_size > 0 else 0.0
    recall = matches / ref_size if ref_size > 0 else 0.0
    f1 = (
        (2 * precision * recall) / (precision + recall)
        if precision + recall > 0
        else 0.0
    )
    return RougeScore(
        precision=round_half_up(precision, 2),
        recall=round_half_up(recall, 2),
        f1=round_half_up(f1, 2),
    )


def rouge_1(generated: str, reference: str) -> RougeScore:
    """ROUGE-1 over distinct unigrams."""
    gen_set = set(tokenize(generated))
    ref_set = set(tokenize(reference))

    overlap = len(gen_set & ref_set)
    return _prf(overlap, len(gen_set), len(ref_set))


def rouge_l(generated: str, reference: str) -> RougeScore:
    """ROUGE-L using the token-level LCS length."""
    gen_tokens = tokenize(generated)
    ref_tokens = tokenize(reference)

    lcs = lcs_length(gen_tokens, ref_tokens)
    return _prf(lcs, len(gen_tokens), len(ref_tokens))


def bleu_1(generated: str, reference: str) -> float:
    """
    Simplified BLEU-1.

    Unigram precision against the reference vocabulary, multiplied by
    the brevity penalty exp(1 - |ref|/|gen|) for short outputs.
    """
    gen_tokens = tokenize(generated)
    ref_tokens = tokenize(reference)

    if not gen_tokens:
        return 0.0

    ref_set = set(ref_tokens)
    matches = sum(1 for t in gen_tokens if t in ref_set)
    precision = matches / len(gen_tokens)

    if len(gen_tokens) >= len(ref_tokens):
        brevity_penalty = 1.0
    else:
        brevity_penalty = math.exp(1 - len(ref_tokens) / len(gen_tokens))

    return round_half_up(brevity_penalty * precision, 2)


def groundedness(generated: str, rag_context: str) -> GroundednessScore:
    """
    Measure how well the output is anchored in the retrieved context.

    groundedness: share of generated tokens (longer than 3 chars) found in
    the context vocabulary, over all generated tokens.
    coverage: share of the context vocabulary (longer than 3 chars) that
    the output actually used.
    """
    gen_tokens = tokenize(generated)
    rag_set = set(tokenize(rag_context))

    grounded = sum(
        1 for t in gen_tokens if len(t) >= MIN_GROUNDED_TOKEN_LEN and t in rag_set
    )
    grounded_ratio = grounded / len(gen_tokens) if gen_tokens else 0.0

    gen_set = set(gen_tokens)
    used = sum(1 for t in rag_set if len(t) >= MIN_GROUNDED_TOKEN_LEN and t in gen_set)
    coverage = used / len(rag_set) if rag_set else 0.0

    return GroundednessScore(
        groundedness=round_half_up(grounded_ratio, 2),
        coverage=round_half_up(coverage, 2),
    )


def calculate_all(
    generated: str,
    reference: str,
    rag_context: Optional[str] = None,
) -> CombinedMetrics:
    """
    Compute every metric at once.

    overall = 0.3 * ROUGE-1 F1 + 0.3 * ROUGE-L F1 + 0.4 * BLEU-1
    """
    r1 = rouge_1(generated, reference)
    rl = rouge_l(generated, reference)
    bleu = bleu_1(generated, reference)

    overall = round_half_up(r1.f1 * 0.3 + rl.f1 * 0.3 + bleu * 0.4, 2)

    return CombinedMetrics(
        rouge1=r1,
        rougeL=rl,
        bleu=bleu,
        overall=overall,
        groundedness=groundedness(generated, rag_context) if rag_context else None,
    )
