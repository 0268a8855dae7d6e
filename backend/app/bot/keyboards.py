"""
Bot keyboard layouts.
"""

START_RECORDING = "🎙️ START RECORDING"
PAUSE_RECORDING = "⏸️ PAUSE RECORDING"
RESUME_RECORDING = "▶️ RESUME RECORDING"
STOP_RECORDING = "⏹️ STOP RECORDING"


def _keyboard(*rows) -> dict:
    return {
        "keyboard": [[{"text": label} for label in row] for row in rows],
        "resize_keyboard": True,
    }


# Main keyboard when no recording is active
START_KEYBOARD = _keyboard([START_RECORDING])

# Keyboard during active recording
ACTIVE_KEYBOARD = _keyboard([PAUSE_RECORDING, STOP_RECORDING])

# Keyboard when recording is paused
PAUSED_KEYBOARD = _keyboard([RESUME_RECORDING, STOP_RECORDING])
