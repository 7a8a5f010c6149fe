"""Relevance scoring of chunks against a free-text query.

Relevance comes from TF-IDF term weighting over the query and the candidate
chunks. It is blended with fixed heuristic factors (recency, priority,
frequency) into a 0-100 combined score.
"""

from dataclasses import dataclass, replace

import numpy as np
import structlog
from nltk.stem.porter import PorterStemmer
from nltk.tokenize import RegexpTokenizer

from ctxinject.utils.numeric import clamp, round_score

from .models import Chunk

logger = structlog.get_logger(__name__)

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "being", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "can", "this", "that", "these", "those",
})

# Heuristic sub-scores (0-100) until real timestamps and usage are tracked
DEFAULT_RECENCY_SCORE = 75.0
DEFAULT_PRIORITY_SCORE = 50.0
DEFAULT_FREQUENCY_SCORE = 50.0

# Average TF-IDF is multiplied by this before clamping to 0-100
RELEVANCE_SCALE = 25.0


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the four sub-scores in the combined score."""

    relevance: float
    recency: float
    priority: float
    frequency: float


STRATEGY_WEIGHTS = {
    "hybrid": ScoringWeights(
        relevance=0.4, recency=0.2, priority=0.2, frequency=0.2
    ),
    "similarity": ScoringWeights(
        relevance=0.7, recency=0.1, priority=0.1, frequency=0.1
    ),
    "recency": ScoringWeights(
        relevance=0.2, recency=0.5, priority=0.2, frequency=0.1
    ),
}


@dataclass
class ChunkScoring:
    """Breakdown of a chunk's combined score."""

    relevance_score: float
    recency_score: float
    priority_score: float
    frequency_score: float
    combined_score: float


class TfIdfIndex:
    """TF-IDF weights for a small document set.

    Term frequency is the raw count of a term in a document; inverse
    document frequency is ``1 + ln(N / (1 + df))``.
    """

    def __init__(self, documents: list[list[str]]) -> None:
        vocabulary = sorted({term for document in documents for term in document})
        self._columns = {term: index for index, term in enumerate(vocabulary)}

        counts = np.zeros((len(documents), len(vocabulary)))
        for row, document in enumerate(documents):
            for term in document:
                counts[row, self._columns[term]] += 1

        document_frequency = np.count_nonzero(counts, axis=0)
        idf = 1.0 + np.log(len(documents) / (1.0 + document_frequency))
        self._weights = counts * idf

    def tfidf(self, term: str, document: int) -> float:
        """Weight of ``term`` in the document at index ``document``."""
        column = self._columns.get(term)
        if column is None:
            return 0.0
        return float(self._weights[document, column])

    def mean_tfidf(self, terms: list[str], document: int) -> float:
        """Average weight of ``terms`` in a document (0 for no terms)."""
        if not terms:
            return 0.0
        return sum(self.tfidf(term, document) for term in terms) / len(terms)


class ContextScorer:
    """Score chunks for relevance to a query."""

    def __init__(self, strategy: str = "hybrid") -> None:
        """
        Initialize scorer with a weighting strategy.

        Args:
            strategy: One of "hybrid", "similarity" or "recency"

        Raises:
            ValueError: If strategy is unknown
        """
        if strategy not in STRATEGY_WEIGHTS:
            raise ValueError(
                f"Invalid scoring strategy '{strategy}'. "
                f"Valid: {', '.join(STRATEGY_WEIGHTS)}"
            )
        self.strategy = strategy
        self._weights = STRATEGY_WEIGHTS[strategy]
        self._tokenizer = RegexpTokenizer(r"\w+")
        self._stemmer = PorterStemmer()

    def score_chunks(self, chunks: list[Chunk], query: str) -> list[Chunk]:
        """
        Score chunks against a query.

        Args:
            chunks: Candidate chunks; not modified
            query: Free-text query

        Returns:
            Copies of the chunks with updated ``score``, sorted by score
            descending (ties keep input order). An empty list yields an
            empty list and a blank query returns ``chunks`` unchanged.
        """
        if not chunks or not query.strip():
            return chunks

        query_terms = self.preprocess(query)
        index = TfIdfIndex(
            [query_terms] + [self.preprocess(chunk.content) for chunk in chunks]
        )

        scored = []
        for position, chunk in enumerate(chunks, start=1):
            scoring = self._calculate_scoring(chunk, query_terms, index, position)
            scored.append(replace(chunk, score=round_score(scoring.combined_score)))

        scored.sort(key=lambda chunk: chunk.score, reverse=True)

        logger.debug(
            "chunks_scored",
            count=len(scored),
            query_terms=len(query_terms),
            top_score=scored[0].score,
        )
        return scored

    def _calculate_scoring(
        self,
        chunk: Chunk,
        query_terms: list[str],
        index: TfIdfIndex,
        document: int,
    ) -> ChunkScoring:
        relevance = clamp(
            index.mean_tfidf(query_terms, document) * RELEVANCE_SCALE, 0.0, 100.0
        )
        recency = DEFAULT_RECENCY_SCORE
        # An unscored chunk (0) counts as average priority
        priority = chunk.score or DEFAULT_PRIORITY_SCORE
        frequency = DEFAULT_FREQUENCY_SCORE

        combined = (
            relevance * self._weights.relevance
            + recency * self._weights.recency
            + priority * self._weights.priority
            + frequency * self._weights.frequency
        )
        return ChunkScoring(
            relevance_score=relevance,
            recency_score=recency,
            priority_score=priority,
            frequency_score=frequency,
            combined_score=combined,
        )

    def preprocess(self, text: str) -> list[str]:
        """Lowercase, tokenize, drop stop-words, stem, drop short tokens."""
        if not text:
            return []
        tokens = self._tokenizer.tokenize(text.lower())
        stemmed = [
            self._stemmer.stem(token) for token in tokens if token not in STOP_WORDS
        ]
        return [token for token in stemmed if len(token) > 2]

    def calculate_similarity(self, text1: str, text2: str) -> float:
        """
        Jaccard similarity of the word sets of two texts, as a percentage.

        Comparison is case-insensitive.

        Returns:
            0-100; 0 when either text is empty or neither has words
        """
        if not text1.strip() or not text2.strip():
            return 0.0

        tokens1 = set(self._tokenizer.tokenize(text1.lower()))
        tokens2 = set(self._tokenizer.tokenize(text2.lower()))
        union = tokens1 | tokens2
        if not union:
            return 0.0
        return len(tokens1 & tokens2) / len(union) * 100
