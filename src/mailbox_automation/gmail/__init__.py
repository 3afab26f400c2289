"""Gmail API adapters."""

from .client import GmailMailbox, translate_error
from .query import build_search_query

__all__ = ["GmailMailbox", "build_search_query", "translate_error"]
