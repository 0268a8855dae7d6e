"""Channels module - external chat and directory integrations."""
