"""Routing consistency benchmark across LLM providers and prompt versions."""

__version__ = "0.1.0"
