"""
Similarity scoring (tier 2 of duplicate detection).

Combines a token-order-insensitive ratio over the primary text (names) with
a plain ratio over the secondary key (email, or website domain for
companies). Weighted per entity profile; if only one of the two fields is
present on both records, that field carries the whole score.
"""

from rapidfuzz import fuzz

from crm.deduplication.models import CandidateRecord
from crm.deduplication.profiles import CONTACT_PROFILE, MatchProfile
from crm.utils.text import normalize_name


def score(a: CandidateRecord, b: CandidateRecord, profile: MatchProfile = CONTACT_PROFILE) -> int:
    """
    Score how likely two records describe the same real-world entity.

    Pure and deterministic. Returns an int in [0, 100]; commutative, and
    100 for a non-empty record compared with itself. Empty or missing
    fields lower confidence instead of raising; two records with nothing
    comparable score 0.
    """
    name_a, name_b = normalize_name(a.primary), normalize_name(b.primary)
    key_a, key_b = profile.secondary_key(a.secondary), profile.secondary_key(b.secondary)

    has_primary = bool(name_a and name_b)
    has_secondary = bool(key_a and key_b)

    if not has_primary and not has_secondary:
        return 0

    if has_primary and has_secondary:
        total = (
            profile.primary_weight * fuzz.token_sort_ratio(name_a, name_b)
            + profile.secondary_weight * fuzz.ratio(key_a, key_b)
        )
    elif has_primary:
        total = fuzz.token_sort_ratio(name_a, name_b)
    else:
        total = fuzz.ratio(key_a, key_b)

    return max(0, min(100, int(round(total))))


class Scorer:
    """Scorer bound to one entity profile."""

    def __init__(self, profile: MatchProfile):
        self.profile = profile

    def __call__(self, a: CandidateRecord, b: CandidateRecord) -> int:
        return score(a, b, self.profile)
