"""Omni Max assistant: a LangGraph agent embedded in customer-service sessions."""

__version__ = "0.1.0"
