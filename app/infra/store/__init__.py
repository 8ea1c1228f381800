"""Persistence adapters for conversations, support agents and chat settings."""

from app.infra.store.base import HelpChatStore
from app.infra.store.memory import InMemoryHelpChatStore
from app.infra.store.sql import SqlHelpChatStore

__all__ = ["HelpChatStore", "InMemoryHelpChatStore", "SqlHelpChatStore"]
