"""Utility modules for the records store."""

from crm.utils.logging import setup_logging
from crm.utils.text import (
    extract_domain,
    normalize_email,
    normalize_name,
    trigram_similarity,
    trigrams,
)

__all__ = [
    # Logging
    "setup_logging",
    # Text utilities
    "normalize_name",
    "normalize_email",
    "extract_domain",
    "trigrams",
    "trigram_similarity",
]
