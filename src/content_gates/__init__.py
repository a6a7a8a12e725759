"""Keyword-to-content pipeline with LLM stages and approval gates."""

__version__ = "0.1.0"
