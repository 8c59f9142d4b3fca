"""
Utility helpers: logging setup and stage timing.
"""

from .logging_config import configure_logging
from .timing import FunctionTimer, timer

__all__ = ['configure_logging', 'FunctionTimer', 'timer']
