"""
CRM records store: duplicate detection and merge engine.

Two-tier matching (trigram prefilter + fuzzy scorer), paginated batch
scanning, and single-transaction merges that reparent every dependent
record from a loser onto a survivor.
"""

__version__ = "1.0.0"
