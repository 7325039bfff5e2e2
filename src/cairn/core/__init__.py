"""
Core module - configuration, logging, shared errors.

Components:
- config: Settings management via pydantic-settings
- errors: Error taxonomy shared by all memory components
- logging: Structured logging setup
- queue: Single-consumer job queue for serialized writers
"""

from cairn.core.config import Settings, load_settings, parse_duration
from cairn.core.errors import CairnError, ConfigurationError, IntegrityError, TransientIOError

__all__ = [
    "Settings",
    "load_settings",
    "parse_duration",
    "CairnError",
    "ConfigurationError",
    "IntegrityError",
    "TransientIOError",
]
