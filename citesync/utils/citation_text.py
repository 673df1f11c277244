"""Text helpers for numeric citation markers and bibliography fingerprints."""
import logging
import re
import unicodedata
from typing import List

logger = logging.getLogger(__name__)

_RANGE = re.compile(r"^(\d+)\s*[-–]\s*(\d+)$")
_NUMBER = re.compile(r"^\d+$")
_NUMBERING_LABEL = re.compile(r"^\s*(?:\[\d+\]|\(\d+\)|\d+\.)\s*")
_WHITESPACE = re.compile(r"\s+")


def parse_citation_numbers(text: str, max_range: int = 100) -> List[int]:
    """Extract the sorted numbers of a marker like '(1, 2)', '[3-5]' or '(2–4)'.

    Ranges wider than ``max_range`` are clamped to their first ``max_range``
    numbers so a pathological marker such as '[1-999999]' stays cheap.

    Args:
        text: Marker text
        max_range: Widest range expanded

    Returns:
        Sorted list of numbers (empty for non-numeric markers)
    """
    inner = re.sub(r"^[\[(]|[)\]]$", "", text.strip()).strip()
    numbers = []
    for part in inner.split(","):
        part = part.strip()
        range_match = _RANGE.match(part)
        if range_match:
            start, end = int(range_match.group(1)), int(range_match.group(2))
            if end < start:
                continue
            if end - start + 1 > max_range:
                logger.warning(
                    f"Citation range {part!r} spans {end - start + 1} numbers, "
                    f"clamping to {max_range}"
                )
                end = start + max_range - 1
            numbers.extend(range(start, end + 1))
        elif _NUMBER.match(part):
            numbers.append(int(part))
        else:
            return []
    return sorted(numbers)


def citation_format_variants(text: str, max_range: int = 100) -> List[str]:
    """Equivalent bracket/parenthesis and spacing spellings of a numeric marker.

    '(1, 2)' -> ['[1, 2]', '[1,2]', '(1,2)'];
    '(2-4)' -> also '[2–4]', '(2–4)', '[2, 3, 4]', ...

    Args:
        text: Marker text
        max_range: Widest range expanded

    Returns:
        Variants other than ``text`` itself, in preference order
    """
    numbers = parse_citation_numbers(text, max_range)
    if not numbers:
        return []

    is_run = len(numbers) >= 2 and all(
        n == numbers[i - 1] + 1 for i, n in enumerate(numbers) if i > 0
    )
    formats = [", ".join(map(str, numbers)), ",".join(map(str, numbers))]
    if is_run:
        formats.append(f"{numbers[0]}-{numbers[-1]}")
        formats.append(f"{numbers[0]}–{numbers[-1]}")

    variants = []
    for fmt in formats:
        for candidate in (f"[{fmt}]", f"({fmt})"):
            if candidate != text and candidate not in variants:
                variants.append(candidate)
    return variants


def strip_numbering_label(text: str) -> str:
    """Drop a leading '[3]', '(3)' or '3.' label from a bibliography line."""
    return _NUMBERING_LABEL.sub("", text, count=1)


def normalize_for_matching(text: str) -> str:
    """NFKC, collapse whitespace, casefold."""
    text = unicodedata.normalize("NFKC", text)
    return _WHITESPACE.sub(" ", text).strip().casefold()


def fingerprint(text: str, length: int = 40) -> str:
    """Normalized, length-bounded prefix identifying a bibliography entry."""
    return normalize_for_matching(strip_numbering_label(text))[:length]
