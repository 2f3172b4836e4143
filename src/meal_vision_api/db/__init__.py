"""Database access layer."""

from .mongo import MongoDB

__all__ = ["MongoDB"]
