"""
Logging helpers for waypoint-link.

All components log through Reticulum's logger so output lands in the same
place, with the same format and verbosity controls, as the rest of an
RNS-based application. Components prefix messages with their ``str()``.
"""

import RNS


LEVELS = {
    "CRITICAL": RNS.LOG_CRITICAL,
    "ERROR": RNS.LOG_ERROR,
    "WARNING": RNS.LOG_WARNING,
    "NOTICE": RNS.LOG_NOTICE,
    "INFO": RNS.LOG_INFO,
    "VERBOSE": RNS.LOG_VERBOSE,
    "DEBUG": RNS.LOG_DEBUG,
    "EXTREME": RNS.LOG_EXTREME,
}


def log(prefix, message, level="INFO"):
    """Log ``message`` prefixed with ``prefix`` at the named RNS level."""
    RNS.log(f"{prefix} {message}", LEVELS.get(level.upper(), RNS.LOG_INFO))


def set_loglevel(level):
    """
    Set the global RNS log level.

    Args:
        level: RNS level constant or level name ("DEBUG", "EXTREME", ...)
    """
    if isinstance(level, str):
        level = LEVELS.get(level.upper(), RNS.LOG_INFO)
    RNS.loglevel = level
