"""Telegram bot layer - keyboards and update handlers."""
