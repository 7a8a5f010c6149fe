"""Compression of text to fit a token target.

Strategies are tried in order of fidelity:

1. Extraction: keep the most important sentences that fit, in original order.
2. Summary (content over 500 tokens): keep a proportional number of the
   top-ranked sentences.
3. Truncation: cut at a character budget, preferring a sentence or line end.
"""

import math
import re
from dataclasses import dataclass

import structlog

from ctxinject.utils.numeric import round_score

from .models import CompressionMethod, CompressionResult, TokenCounts
from .tokens import estimate_chars_from_tokens, estimate_tokens, truncate_to_tokens

logger = structlog.get_logger(__name__)

# Only content longer than this is worth summarizing
SUMMARY_MIN_TOKENS = 500

ELLIPSIS = "..."

_SENTENCE_END = re.compile(r"[.!?]+\s*(?=[A-Z]|$)")
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_TECHNICAL_KEYWORDS = re.compile(
    r"\b(function|class|interface|import|export|const|let|var|return|async"
    r"|await|try|catch|if|else|for|while|switch|case)\b",
    re.IGNORECASE,
)
_DIGITS = re.compile(r"\d+")
_URL_OR_PATH = re.compile(r"https?://|/[a-zA-Z0-9_.-]+|[a-zA-Z]:\\")

_SENTENCE_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by",
})


@dataclass
class ScoredSentence:
    """A sentence with its importance score and original position."""

    text: str
    score: float
    index: int


def split_sentences(text: str) -> list[str]:
    """
    Split text into sentences.

    A sentence ends at terminal punctuation followed by a capital letter or
    the end of the text; the punctuation stays with its sentence. Text that
    yields at most one sentence is split into non-blank lines instead.
    """
    if not text.strip():
        return []

    sentences = []
    start = 0
    for match in _SENTENCE_END.finditer(text):
        sentences.append(text[start : match.end()].strip())
        start = match.end()
    sentences.append(text[start:].strip())
    sentences = [sentence for sentence in sentences if sentence]

    if len(sentences) <= 1:
        return [line for line in text.split("\n") if line.strip()]
    return sentences


def _meaningful_words(sentence: str) -> list[str]:
    words = (_NON_ALNUM.sub("", word) for word in sentence.lower().split())
    return [
        word for word in words if len(word) > 2 and word not in _SENTENCE_STOP_WORDS
    ]


def score_sentences(sentences: list[str]) -> list[ScoredSentence]:
    """
    Score sentences by importance.

    The base score is the mean document frequency of a sentence's meaningful
    words. Multipliers: first or last sentence x1.3; 5-30 words x1.2 (fewer
    than 3 words x0.5); technical keywords x1.4; digits x1.2; URLs or paths
    x1.3.
    """
    if not sentences:
        return []

    word_freq: dict[str, int] = {}
    for sentence in sentences:
        for word in _meaningful_words(sentence):
            word_freq[word] = word_freq.get(word, 0) + 1

    last = len(sentences) - 1
    scored = []
    for index, sentence in enumerate(sentences):
        meaningful = _meaningful_words(sentence)
        score = (
            sum(word_freq[word] for word in meaningful) / len(meaningful)
            if meaningful
            else 0.0
        )

        if index in (0, last):
            score *= 1.3

        word_count = len(sentence.lower().split())
        if 5 <= word_count <= 30:
            score *= 1.2
        elif word_count < 3:
            score *= 0.5

        if _TECHNICAL_KEYWORDS.search(sentence):
            score *= 1.4
        if _DIGITS.search(sentence):
            score *= 1.2
        if _URL_OR_PATH.search(sentence):
            score *= 1.3

        scored.append(
            ScoredSentence(text=sentence, score=round_score(score), index=index)
        )

    return scored


def _ranked(sentences: list[str]) -> list[ScoredSentence]:
    return sorted(score_sentences(sentences), key=lambda s: s.score, reverse=True)


def _in_original_order(selected: list[ScoredSentence]) -> str:
    return " ".join(s.text for s in sorted(selected, key=lambda s: s.index))


def _ratio(compressed: str, original: str) -> float:
    if not original:
        return 1.0
    return len(compressed) / len(original)


class ContextCompressor:
    """Shrink text to a token target using escalating strategies."""

    def compress(self, content: str, target_tokens: int) -> CompressionResult:
        """
        Compress content to fit within ``target_tokens``.

        Args:
            content: Text to compress
            target_tokens: Token target (negative targets are treated as 0)

        Returns:
            CompressionResult. Content that already fits is returned
            unchanged with method ``truncation`` and ratio 1.
        """
        target_tokens = max(0, target_tokens)
        original_tokens = estimate_tokens(content)

        if original_tokens <= target_tokens:
            return CompressionResult(
                original=content,
                compressed=content,
                ratio=1.0,
                tokens=TokenCounts(before=original_tokens, after=original_tokens),
                method=CompressionMethod.TRUNCATION,
            )

        sentences = split_sentences(content)

        result = self._extract(content, sentences, original_tokens, target_tokens)
        if result.compressed and result.tokens.after <= target_tokens:
            return self._log(result)

        if original_tokens > SUMMARY_MIN_TOKENS:
            result = self._summarize(content, sentences, original_tokens, target_tokens)
            if result.compressed and result.tokens.after <= target_tokens:
                return self._log(result)

        return self._log(self._truncate(content, original_tokens, target_tokens))

    def _extract(
        self,
        content: str,
        sentences: list[str],
        original_tokens: int,
        target_tokens: int,
    ) -> CompressionResult:
        selected: list[ScoredSentence] = []
        current_tokens = 0
        for sentence in _ranked(sentences):
            sentence_tokens = estimate_tokens(sentence.text)
            if current_tokens + sentence_tokens <= target_tokens:
                selected.append(sentence)
                current_tokens += sentence_tokens

        compressed = _in_original_order(selected)
        return CompressionResult(
            original=content,
            compressed=compressed,
            ratio=_ratio(compressed, content),
            tokens=TokenCounts(
                before=original_tokens, after=estimate_tokens(compressed)
            ),
            method=CompressionMethod.EXTRACTION,
        )

    def _summarize(
        self,
        content: str,
        sentences: list[str],
        original_tokens: int,
        target_tokens: int,
    ) -> CompressionResult:
        target_sentences = math.ceil(len(sentences) * target_tokens / original_tokens)
        summary = _in_original_order(_ranked(sentences)[:target_sentences])
        return CompressionResult(
            original=content,
            compressed=summary,
            ratio=_ratio(summary, content),
            tokens=TokenCounts(
                before=original_tokens, after=estimate_tokens(summary)
            ),
            method=CompressionMethod.SUMMARY,
        )

    def _truncate(
        self,
        content: str,
        original_tokens: int,
        target_tokens: int,
    ) -> CompressionResult:
        target_chars = estimate_chars_from_tokens(target_tokens)

        truncated = content
        if len(content) > target_chars:
            truncated = content[:target_chars]
            cut_point = max(truncated.rfind("."), truncated.rfind("\n"))
            if cut_point > target_chars * 0.8:
                truncated = truncated[: cut_point + 1]

        # The 4 chars/token cut is coarse; tighten until the marked text fits.
        budget = target_tokens
        while truncated and estimate_tokens(truncated + ELLIPSIS) > target_tokens:
            budget -= 1
            if budget <= 0:
                truncated = ""
                break
            truncated = truncate_to_tokens(truncated, budget)

        compressed = truncated
        if truncated and len(truncated) < len(content):
            compressed = truncated + ELLIPSIS

        return CompressionResult(
            original=content,
            compressed=compressed,
            ratio=_ratio(compressed, content),
            tokens=TokenCounts(
                before=original_tokens, after=estimate_tokens(compressed)
            ),
            method=CompressionMethod.TRUNCATION,
        )

    def _log(self, result: CompressionResult) -> CompressionResult:
        logger.debug(
            "content_compressed",
            method=result.method.value,
            tokens_before=result.tokens.before,
            tokens_after=result.tokens.after,
            ratio=round(result.ratio, 3),
        )
        return result
