"""Biomarker extraction from free-text lab reports."""

__version__ = "0.1.0"
