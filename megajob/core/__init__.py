"""Core configuration, database bootstrap and exceptions."""
