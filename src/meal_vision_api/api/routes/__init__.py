"""API routes."""

from . import analysis, images

__all__ = ["analysis", "images"]
