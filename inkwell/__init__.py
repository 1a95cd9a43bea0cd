"""
Inkwell
Multi-agent chapter generation pipeline for long-form fiction.
"""

__version__ = "0.1.0"
