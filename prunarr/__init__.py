"""Prunarr - rule-driven deletion workflow for media libraries"""

__version__ = "1.0.0"
