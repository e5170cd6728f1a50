"""
pgsetup - Guided setup of Postgres and the pganalyze collector
"""

__version__ = "0.1.0"

from .core import GuidedSetup
from .errors import SetupError

__all__ = ["GuidedSetup", "SetupError"]
