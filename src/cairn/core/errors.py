"""Error taxonomy for the memory system."""


class CairnError(Exception):
    """Base class for all cairn errors."""


class ConfigurationError(CairnError, ValueError):
    """Malformed configuration value (duration string, weight, factor).

    Fatal at startup. An explicitly supplied value is never replaced by a default.
    """


class TransientIOError(CairnError):
    """Recoverable failure of one unit of work (file read, summary timeout).

    Callers log it, skip the affected unit and keep going.
    """


class IntegrityError(CairnError):
    """Persisted state is inconsistent or corrupt (bad JSON blob, failed cascade)."""
