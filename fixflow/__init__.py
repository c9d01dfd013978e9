"""Fixflow: maintenance ticket and work-order workflow service."""

__version__ = "0.1.0"
