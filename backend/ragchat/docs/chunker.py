"""Document chunker - deterministic fixed-window text splitting."""

import re
from collections.abc import Iterator

_NUL = re.compile("\x00")
# Control characters other than tab, LF and CR
_CONTROL = re.compile("[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")

DEFAULT_MAX_CHARS = 1000


def sanitize_text(text: str) -> str:
    """Strip NUL and control characters, collapse whitespace, trim.

    Args:
        text: Raw document text (any decoded bytes)

    Returns:
        Cleaned single-line text
    """
    cleaned = _NUL.sub("", text)
    cleaned = _CONTROL.sub(" ", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned)
    return cleaned.strip()


def chunk_text(text: str, *, max_chars: int = DEFAULT_MAX_CHARS) -> Iterator[str]:
    """Lazily split sanitized text into consecutive windows.

    Pure generator with no I/O. Each call starts over from the beginning of
    the text, so the sequence can be re-iterated by calling again.

    Args:
        text: Raw document text
        max_chars: Maximum characters per chunk (default 1000)

    Yields:
        Trimmed, non-empty chunk text in left-to-right source order.
        Chunks never overlap and never exceed max_chars.

    Raises:
        ValueError: If max_chars is smaller than 1
    """
    if max_chars < 1:
        raise ValueError(f"max_chars must be positive, got {max_chars}")

    return _windows(sanitize_text(text), max_chars)


def _windows(cleaned: str, max_chars: int) -> Iterator[str]:
    for start in range(0, len(cleaned), max_chars):
        window = cleaned[start : start + max_chars].strip()
        if window:
            yield window


def chunk_document(text: str, *, max_chars: int = DEFAULT_MAX_CHARS) -> list[tuple[int, str]]:
    """Chunk document text into ordered segments.

    Returns:
        List of (sequence_index, chunk_text) tuples, indices 0, 1, 2, ...
    """
    return list(enumerate(chunk_text(text, max_chars=max_chars)))
