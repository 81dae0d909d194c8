"""Advisory Tracker: per-team remediation tracking for security advisory sheets."""

__version__ = "1.0.0"
