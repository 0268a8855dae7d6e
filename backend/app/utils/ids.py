"""Identifier generators."""

import secrets
import time


def generate_session_id() -> str:
    """
    Generate a recording session id.

    Millisecond timestamp plus 32 random bits, so ids sort by creation
    time and two operators starting in the same millisecond still differ.
    """
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
