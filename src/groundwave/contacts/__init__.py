"""Address book."""

from groundwave.contacts.manager import ContactManager

__all__ = ["ContactManager"]
