"""Style registry: maps citation style labels to formatted-text columns.

The registry is built once by the caller and handed to the components that
need it. Label normalization is pluggable so a host application can supply
its own normalizer.
"""
import logging
import re
from typing import Callable, Dict, Iterable, Optional, Tuple

from .models import ReferenceEntry
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

StyleNormalizer = Callable[[str], str]

DEFAULT_STYLE_COLUMNS = {
    "apa": "formatted_apa",
    "mla": "formatted_mla",
    "chicago": "formatted_chicago",
    "vancouver": "formatted_vancouver",
    "ieee": "formatted_ieee",
}


def default_style_normalizer(label: str) -> str:
    """Reduce a raw style label to its leading word.

    'APA 7th edition' -> 'apa', 'Chicago17' -> 'chicago', 'IEEE' -> 'ieee'.
    """
    match = re.match(r"[a-z]+", label.strip().lower())
    return match.group(0) if match else ""


class StyleRegistry:
    """Known citation styles and the reference column holding each one.

    Example:
        >>> registry = StyleRegistry.default()
        >>> registry.column_for("APA7")
        'formatted_apa'
    """

    def __init__(
        self,
        columns: Optional[Dict[str, str]] = None,
        normalizer: Optional[StyleNormalizer] = None,
        default_style: Optional[str] = None,
    ):
        """Initialize registry.

        Args:
            columns: Canonical style key -> ReferenceEntry formatted column
            normalizer: Callable turning a raw style label into a canonical key
            default_style: Label used when a document has no style
        """
        self._columns = dict(columns or {})
        self._normalizer = normalizer or default_style_normalizer
        self.default_style = default_style

    @classmethod
    def default(cls, default_style: Optional[str] = None) -> "StyleRegistry":
        """Registry with the built-in styles."""
        return cls(DEFAULT_STYLE_COLUMNS, default_style=default_style)

    def register(self, style_key: str, column: str) -> None:
        """Add or replace a style column."""
        self._columns[style_key] = column

    @property
    def styles(self) -> Tuple[str, ...]:
        return tuple(sorted(self._columns))

    def normalize(self, label: Optional[str]) -> str:
        """Canonical key for a raw style label (falls back to the default style)."""
        label = label or self.default_style or ""
        return self._normalizer(label) if label else ""

    def column_for(self, label: Optional[str]) -> str:
        """Formatted-text column for a style label.

        Raises:
            ConfigurationError: If the style is unknown
        """
        key = self.normalize(label)
        column = self._columns.get(key)
        if column is None:
            raise ConfigurationError(
                f"No formatted-text column for style {label!r} (normalized {key!r}); "
                f"known styles: {', '.join(self.styles) or 'none'}"
            )
        return column

    def coverage(self, entries: Iterable[ReferenceEntry], label: Optional[str]) -> Tuple[int, int]:
        """Count entries with and without formatted text for a style."""
        column = self.column_for(label)
        present = missing = 0
        for entry in entries:
            if entry.formatted_text(column):
                present += 1
            else:
                missing += 1
        if missing:
            logger.info(f"{missing} references have no {column} text")
        return present, missing
