"""Groundwave: personal contacts, zettelkasten, QSO logbook and WhatsApp side-channel."""

__version__ = "0.1.0"
__all__ = ["__version__"]
