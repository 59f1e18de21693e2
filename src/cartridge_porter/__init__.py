"""
Cartridge-Porter: document store to relational schema export

Exports schema-less document collections into relational tables, inferring
and widening column types as rows arrive and exploding nested arrays into
child tables.
"""

__version__ = "0.1.0"
__author__ = "Cartridge Team"
__email__ = "team@cartridge.dev"

from .core.config import PorterConfig
from .core.runner import PorterRunner

__all__ = ["PorterConfig", "PorterRunner"]
