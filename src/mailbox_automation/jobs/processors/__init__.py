"""Batch processors, one per job kind."""

from .base import BatchOutcome, BatchProcessor
from .labeling import LabelJobProcessor
from .scan import ScanJobProcessor

__all__ = ["BatchOutcome", "BatchProcessor", "LabelJobProcessor", "ScanJobProcessor"]
