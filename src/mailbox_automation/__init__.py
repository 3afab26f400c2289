"""Mailbox Automation - resumable mailbox scan and label jobs.

This package scans a mailbox to build a contact graph and applies label rules to
existing messages. Both run as resumable jobs that advance one bounded batch per
invocation against the Gmail API (or IMAP for scans).
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from mailbox_automation.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
