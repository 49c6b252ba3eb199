"""Switchyard - routes generative work across interchangeable AI providers."""

__version__ = "0.1.0"
