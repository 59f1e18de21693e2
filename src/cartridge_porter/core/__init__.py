"""Core components for cartridge-porter."""

from .config import PorterConfig
from .orchestrator import ExportOrchestrator, ExportStats, SkipReason
from .runner import PorterRunner

__all__ = ["PorterConfig", "ExportOrchestrator", "ExportStats", "SkipReason", "PorterRunner"]
