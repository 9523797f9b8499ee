"""Issue, revoke and verify academic certificates anchored in per-institution contracts."""

__version__ = "1.0.0"
