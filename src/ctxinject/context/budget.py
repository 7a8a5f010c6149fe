"""Token budget creation and greedy allocation of chunks."""

from dataclasses import replace

import structlog

from .compression import ContextCompressor
from .models import Chunk, TokenBudget

logger = structlog.get_logger(__name__)

DEFAULT_RESERVED_TOKENS = 500  # Headroom for the system prompt
DEFAULT_MIN_COMPRESS_TOKENS = 100
DEFAULT_LOW_WATER_TOKENS = 50


def create_budget(total: int, reserved: int = DEFAULT_RESERVED_TOKENS) -> TokenBudget:
    """
    Create an empty token budget.

    Args:
        total: Requested maximum tokens for the context block
        reserved: Tokens kept back for the system prompt

    Returns:
        TokenBudget with ``available = total - reserved`` (never negative)
    """
    return TokenBudget(
        total=total,
        reserved=reserved,
        available=max(0, total - reserved),
    )


def allocate_tokens(
    candidates: list[Chunk],
    budget: TokenBudget,
    compressor: ContextCompressor | None = None,
    min_compress_tokens: int = DEFAULT_MIN_COMPRESS_TOKENS,
    low_water_mark: int = DEFAULT_LOW_WATER_TOKENS,
) -> list[Chunk]:
    """
    Greedily fill the budget with candidate chunks.

    Candidates are taken in the given order (highest score first). A chunk
    that fits is accepted whole. A chunk that does not fit is compressed to
    the remaining budget when a compressor is given and the chunk is larger
    than ``min_compress_tokens``; it is accepted if the compressed text fits
    and dropped otherwise. The walk stops once fewer than ``low_water_mark``
    tokens remain.

    Args:
        candidates: Scored chunks, sorted by score descending
        budget: Budget to spend; ``used`` and ``allocation`` are updated
        compressor: Compressor for oversized chunks, or None to skip them
        min_compress_tokens: Smallest chunk worth compressing (exclusive)
        low_water_mark: Remaining tokens below which allocation stops

    Returns:
        Accepted chunks in acceptance order; compressed chunks carry the
        compressed content and token count
    """
    selected: list[Chunk] = []
    remaining = budget.available - budget.used
    compressed_count = 0

    for chunk in candidates:
        accepted: Chunk | None = None

        if chunk.tokens <= remaining:
            accepted = chunk
        elif compressor is not None and chunk.tokens > min_compress_tokens:
            result = compressor.compress(chunk.content, remaining)
            if result.compressed and result.tokens.after <= remaining:
                accepted = replace(
                    chunk, content=result.compressed, tokens=result.tokens.after
                )
                compressed_count += 1

        if accepted is not None:
            selected.append(accepted)
            remaining -= accepted.tokens
            budget.allocation[accepted.source_id] = (
                budget.allocation.get(accepted.source_id, 0) + accepted.tokens
            )

        if remaining < low_water_mark:
            break

    budget.used = budget.available - remaining

    logger.debug(
        "budget_allocated",
        candidates=len(candidates),
        selected=len(selected),
        compressed=compressed_count,
        used=budget.used,
        available=budget.available,
    )
    return selected
