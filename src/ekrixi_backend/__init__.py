"""Ekrixi Backend: a Gemini generation proxy for the Ekrixi writing app."""

__version__ = "0.1.0"
