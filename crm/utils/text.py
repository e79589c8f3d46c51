"""Text processing utility functions for record matching."""

import re
import unicodedata

# Letters and digits of any script; underscore counts as punctuation
_NON_ALNUM = re.compile(r"[\W_]+")
_WORDS = re.compile(r"[^\W_]+")


def _fold(text: str) -> str:
    """Strip accents and lowercase, keeping non-Latin letters intact."""
    text = unicodedata.normalize("NFKD", text)
    text = "".join(c for c in text if not unicodedata.combining(c))
    return unicodedata.normalize("NFC", text).lower()


def normalize_name(name: str | None) -> str:
    """Normalize a person or company name for matching.

    Applies the following transformations:
    - Unicode NFKD normalization (decomposes characters)
    - Removes diacritical marks (accents)
    - Converts to lowercase
    - Replaces punctuation with spaces and collapses whitespace

    Args:
        name: The name to normalize

    Returns:
        Normalized name string, or empty string if input is empty/None
    """
    if not name:
        return ""

    return " ".join(_NON_ALNUM.sub(" ", _fold(name)).split())


def normalize_email(email: str | None) -> str:
    """Trim and lowercase an email address. Empty/None yields ""."""
    if not email:
        return ""
    return email.strip().lower()


def extract_domain(website: str | None) -> str:
    """Extract the bare domain from a URL or website string.

    Strips protocol, path, query, port and a leading "www.", e.g.
    "https://www.example.com/about" -> "example.com".
    """
    if not website:
        return ""

    domain = website.strip().lower()

    if "://" in domain:
        domain = domain.split("://", 1)[1]

    domain = re.split(r"[/?#]", domain, maxsplit=1)[0]
    domain = domain.split(":", 1)[0]

    if domain.startswith("www."):
        domain = domain[4:]

    return domain


def trigrams(text: str | None) -> frozenset[str]:
    """Return the trigram set of a string, compatible with pg_trgm.

    Each alphanumeric word is lowercased and padded with two leading spaces
    and one trailing space before being cut into 3-character grams, so
    "Jon" yields {"  j", " jo", "jon", "on "}.
    """
    if not text:
        return frozenset()

    grams = set()
    for word in _WORDS.findall(_fold(text)):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def trigram_similarity(a: frozenset[str], b: frozenset[str]) -> float:
    """Jaccard similarity of two trigram sets (pg_trgm similarity())."""
    if not a or not b:
        return 0.0
    shared = len(a & b)
    return shared / (len(a) + len(b) - shared)
