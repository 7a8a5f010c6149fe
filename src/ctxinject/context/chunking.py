"""Sliding-window chunking of source content."""

from .models import Chunk
from .tokens import estimate_tokens

DEFAULT_CHUNK_SIZE = 1000  # Characters per chunk
DEFAULT_CHUNK_OVERLAP = 100  # Characters shared by consecutive chunks


def generate_chunks(
    source_id: str,
    content: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[Chunk]:
    """
    Slice content into overlapping chunks.

    The window advances by ``chunk_size - overlap`` characters, so content
    of length L yields ``ceil(L / (chunk_size - overlap))`` chunks. Chunk ids
    are ``"<source_id>-<offset>"`` and line numbers are 1-based.

    Args:
        source_id: Id of the owning source
        content: Full source content
        chunk_size: Characters per chunk
        overlap: Characters repeated at the start of the next chunk

    Returns:
        Chunks in offset order, each with its token estimate

    Raises:
        ValueError: If overlap is not smaller than chunk_size
    """
    step = chunk_size - overlap
    if step < 1:
        raise ValueError(
            f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
        )

    chunks = []
    for offset in range(0, len(content), step):
        end = min(offset + chunk_size, len(content))
        chunk_content = content[offset:end]
        chunks.append(
            Chunk(
                id=f"{source_id}-{offset}",
                source_id=source_id,
                content=chunk_content,
                score=0.0,
                tokens=estimate_tokens(chunk_content),
                start_line=line_number(content, offset),
                end_line=line_number(content, end),
            )
        )
    return chunks


def line_number(content: str, position: int) -> int:
    """1-based line number of the character at ``position``."""
    return content.count("\n", 0, position) + 1
