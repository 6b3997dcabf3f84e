"""Keeps an application installation in sync with its declarative manifest."""

__version__ = "1.0.0"
