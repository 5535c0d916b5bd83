"""
Idempotent fetch service.

Runs a remote fetch at most once per request key: duplicate submissions get
the cached result of the first successful execution, or an explicit
"already in progress" response while it is still running.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
