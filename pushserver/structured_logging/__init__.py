"""
Structured logging package for the push server.

Imports should use explicit paths like
'from pushserver.structured_logging.enhanced_logging_config import get_logger'.

Named 'structured_logging' rather than 'logging' to avoid shadowing the
standard library module.
"""

__all__: list[str] = []
