"""Meal Vision API - meal photo analysis with vision language models."""

__version__ = "1.0.0"
