"""
Journal batch translator.

Translates the items of a document through the OpenAI Batch API and keeps
per-item flags so an unfinished job can be resumed after a restart.
"""

__version__ = "0.1.0"
