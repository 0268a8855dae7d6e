"""Core module - recording state machine, identity resolution and logging."""
