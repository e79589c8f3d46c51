"""
Request-scoped services for the CRM API.
"""

from .request_context import get_request_context

__all__ = [
    "get_request_context",
]
