"""Boundary protocol: message dispatch and fire-and-forget notifications."""

from .dispatch import MessageRegistry, create_default_registry
from .notifier import Notifier
from .types import Message, Response

__all__ = ["Message", "MessageRegistry", "Notifier", "Response", "create_default_registry"]
