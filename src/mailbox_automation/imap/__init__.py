"""IMAP adapters."""

from .client import ImapMailbox, normalize_app_password

__all__ = ["ImapMailbox", "normalize_app_password"]
