"""Token estimation for budget management.

Approximates GPT-style tokenization without a tokenizer model. Text is
classified as code, structured data or plain prose and counted with a
content-aware heuristic for each class. These are estimates, not exact
counts for any particular model vocabulary; use them for budgeting only.

All functions are pure and deterministic: the same text always yields the
same count.
"""

import math
import re

# Coarse ratio used where a quick character-based estimate is enough
CHARS_PER_TOKEN = 4

# Short words that are single tokens in most vocabularies
COMMON_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
    "her", "was", "one", "our", "out", "day", "get", "has", "him", "his",
    "how", "man", "new", "now", "old", "see", "two", "way", "who", "boy",
    "did", "its", "let", "put", "say", "she", "too", "use",
})

_CODE_INDICATORS = (
    re.compile(
        r"\b(function|class|interface|import|export|const|let|var|return"
        r"|if|else|for|while)\b"
    ),
    re.compile(r"[{}();]"),
    re.compile(r"//|/\*|\*/"),
    re.compile(r"\b(public|private|protected|static|async|await)\b"),
)

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]")
_WORD_PATTERN = re.compile(r"\w+")
_STRUCTURAL_PATTERN = re.compile(r"""[{}\[\]<>,:;"']""")

_STRUCTURED_DELIMITERS = (("{", "}"), ("[", "]"), ("<", ">"))


def estimate_tokens(text: str) -> int:
    """
    Estimate token count for text.

    Content is classified in priority order as code, structured data
    (bracket-delimited JSON/XML-like text) or plain text, and counted with
    the matching heuristic.

    Args:
        text: Text to estimate tokens for

    Returns:
        Estimated token count (0 for empty or blank text)

    Examples:
        >>> estimate_tokens("")
        0
        >>> estimate_tokens("Hello world")
        3
    """
    if not text or not text.strip():
        return 0

    if is_code(text):
        return _count_code_tokens(text)
    if is_structured(text):
        return _count_structured_tokens(text)
    return _count_text_tokens(text)


def is_code(text: str) -> bool:
    """Return True if text looks like source code."""
    return any(pattern.search(text) for pattern in _CODE_INDICATORS)


def is_structured(text: str) -> bool:
    """Return True if trimmed text is wrapped in {}, [] or <>."""
    trimmed = text.strip()
    return any(
        trimmed.startswith(opening) and trimmed.endswith(closing)
        for opening, closing in _STRUCTURED_DELIMITERS
    )


def _count_text_tokens(text: str) -> int:
    total = 0.0
    for token in _TOKEN_PATTERN.findall(text):
        if token.lower() in COMMON_WORDS:
            total += 1
        elif _WORD_PATTERN.fullmatch(token):
            if len(token) <= 4:
                total += 1
            elif len(token) <= 8:
                total += 1.5
            else:
                total += math.ceil(len(token) / 5)
        else:
            # Punctuation or special character
            total += 0.5
    return math.ceil(total)


def _count_code_tokens(text: str) -> int:
    total = 0
    for line in text.split("\n"):
        if not line.strip():
            total += 1  # Newline token
            continue

        line_tokens = 0
        for token in _TOKEN_PATTERN.findall(line):
            if _WORD_PATTERN.fullmatch(token):
                # Identifier or keyword
                line_tokens += max(1, math.ceil(len(token) / 4))
            else:
                line_tokens += 1
        total += max(1, line_tokens)
    return total


def _count_structured_tokens(text: str) -> int:
    structural = len(_STRUCTURAL_PATTERN.findall(text))
    words = len(_WORD_PATTERN.findall(text))
    return structural + math.ceil(words * 1.2)


def remaining_tokens(text: str, max_tokens: int) -> int:
    """Tokens left in ``max_tokens`` after spending them on ``text``, at least 0."""
    return max(0, max_tokens - estimate_tokens(text))


def can_fit(text: str, max_tokens: int) -> bool:
    """Return True if text fits within ``max_tokens``."""
    return estimate_tokens(text) <= max_tokens


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """
    Truncate text to fit within a token budget.

    Binary-searches the longest character prefix whose estimate fits, then
    backs off to a natural boundary: a sentence end within the last 20% of
    the prefix, else a newline within the last 20%, else a space within the
    last 10%. The boundary is only used if the shorter text still fits.

    Args:
        text: Text to truncate
        max_tokens: Maximum tokens allowed

    Returns:
        Text unchanged if it already fits, otherwise a prefix whose estimate
        is at most ``max_tokens``
    """
    if estimate_tokens(text) <= max_tokens:
        return text

    left = 0
    right = len(text)
    best_fit = ""
    while left <= right:
        mid = (left + right) // 2
        candidate = text[:mid]
        if estimate_tokens(candidate) <= max_tokens:
            best_fit = candidate
            left = mid + 1
        else:
            right = mid - 1

    snapped = _natural_breakpoint(best_fit)
    if snapped != best_fit and estimate_tokens(snapped) <= max_tokens:
        return snapped
    return best_fit


def _natural_breakpoint(truncated: str) -> str:
    length = len(truncated)

    last_sentence_end = max(
        truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?")
    )
    if last_sentence_end > length * 0.8:
        return truncated[: last_sentence_end + 1]

    last_newline = truncated.rfind("\n")
    if last_newline > length * 0.8:
        return truncated[:last_newline]

    last_space = truncated.rfind(" ")
    if last_space > length * 0.9:
        return truncated[:last_space]

    return truncated


def estimate_tokens_from_chars(char_count: int) -> int:
    """Coarse token estimate for a character count (4 chars per token)."""
    return math.ceil(char_count / CHARS_PER_TOKEN)


def estimate_chars_from_tokens(token_count: int) -> int:
    """Coarse character estimate for a token count (4 chars per token)."""
    return token_count * CHARS_PER_TOKEN
