"""Realtime module - room fan-out, domain events and the client sync agent."""
