"""Markdown formatting of selected chunks for prompt injection."""

from collections.abc import Mapping

from .models import Chunk, Source


def format_context(chunks: list[Chunk], sources: Mapping[str, Source]) -> str:
    """
    Format chunks as markdown grouped by source.

    Each source group gets a ``## Context from <name> (<type>)`` header;
    chunks with a line range are prefixed with ``Lines a-b:``. Groups appear
    in order of their first chunk. Chunks whose source is no longer
    registered are left out.

    Args:
        chunks: Selected chunks
        sources: Registered sources by id

    Returns:
        Formatted context, stripped of surrounding whitespace
    """
    grouped: dict[str, list[Chunk]] = {}
    for chunk in chunks:
        grouped.setdefault(chunk.source_id, []).append(chunk)

    parts: list[str] = []
    for source_id, source_chunks in grouped.items():
        source = sources.get(source_id)
        if source is None:
            continue

        parts.append(f"\n## Context from {source.name} ({source.type.value})\n\n")
        for chunk in source_chunks:
            if chunk.start_line and chunk.end_line:
                parts.append(f"Lines {chunk.start_line}-{chunk.end_line}:\n")
            parts.append(chunk.content + "\n\n")

    return "".join(parts).strip()
