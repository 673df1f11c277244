"""Configuration management for citesync."""
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple
from dotenv import load_dotenv

DEFAULT_BIBLIOGRAPHY_HEADINGS = (
    "References",
    "Reference List",
    "Bibliography",
    "Works Cited",
    "Literature Cited",
)


@dataclass
class Config:
    """citesync configuration.

    Attributes:
        revision_author: Author label written on tracked revision marks
        export_mode: Default output form ('tracked' or 'clean')
        citation_style: Default style label when a document has none
        max_chain_hops: Upper bound on text-map hops per citation instance
        max_text_length: Longest before/after text accepted into the change log
        max_citation_range: Widest numeric range expanded when building alternates
        fingerprint_length: Length of the reference fingerprint prefix
        bibliography_headings: Paragraph texts that open the bibliography section
        highlight_tracked_changes: Colour inserted runs by change type
        storage_backend: Default object storage backend ('local' or 'http')
        storage_root: Root directory for the local backend
        storage_base_url: Base URL for the http backend
        storage_timeout: Request timeout in seconds for the http backend
        max_document_size: Largest container (bytes) the assembler will open
    """

    # Revision marks
    revision_author: str = "Citation Manager"
    export_mode: str = "tracked"
    highlight_tracked_changes: bool = False

    # Reconciliation
    citation_style: str = "APA7"
    max_chain_hops: int = 64
    max_text_length: int = 5000
    max_citation_range: int = 100

    # Bibliography handling
    fingerprint_length: int = 40
    bibliography_headings: Tuple[str, ...] = field(
        default_factory=lambda: DEFAULT_BIBLIOGRAPHY_HEADINGS
    )

    # Storage
    storage_backend: str = "local"
    storage_root: str = "./uploads"
    storage_base_url: Optional[str] = None
    storage_timeout: float = 30.0
    max_document_size: int = 50 * 1024 * 1024

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Config":
        """Load configuration from environment variables.

        Args:
            env_file: Path to .env file (optional)

        Returns:
            Config instance with values from environment
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        headings = os.getenv("CITESYNC_BIBLIOGRAPHY_HEADINGS")

        return cls(
            revision_author=os.getenv("CITESYNC_REVISION_AUTHOR", "Citation Manager"),
            export_mode=os.getenv("CITESYNC_EXPORT_MODE", "tracked"),
            highlight_tracked_changes=os.getenv(
                "CITESYNC_HIGHLIGHT_TRACKED_CHANGES", "false"
            ).lower() == "true",
            citation_style=os.getenv("CITESYNC_CITATION_STYLE", "APA7"),
            max_chain_hops=int(os.getenv("CITESYNC_MAX_CHAIN_HOPS", "64")),
            max_text_length=int(os.getenv("CITESYNC_MAX_TEXT_LENGTH", "5000")),
            max_citation_range=int(os.getenv("CITESYNC_MAX_CITATION_RANGE", "100")),
            fingerprint_length=int(os.getenv("CITESYNC_FINGERPRINT_LENGTH", "40")),
            bibliography_headings=tuple(h.strip() for h in headings.split(",") if h.strip())
            if headings
            else DEFAULT_BIBLIOGRAPHY_HEADINGS,
            storage_backend=os.getenv("CITESYNC_STORAGE_BACKEND", "local"),
            storage_root=os.getenv("CITESYNC_STORAGE_ROOT", "./uploads"),
            storage_base_url=os.getenv("CITESYNC_STORAGE_BASE_URL"),
            storage_timeout=float(os.getenv("CITESYNC_STORAGE_TIMEOUT", "30")),
            max_document_size=int(
                os.getenv("CITESYNC_MAX_DOCUMENT_SIZE", str(50 * 1024 * 1024))
            ),
        )

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Load configuration from dictionary.

        Args:
            config_dict: Dictionary with configuration values

        Returns:
            Config instance
        """
        values = {k: v for k, v in config_dict.items() if k in cls.__annotations__}
        if "bibliography_headings" in values:
            values["bibliography_headings"] = tuple(values["bibliography_headings"])
        return cls(**values)
