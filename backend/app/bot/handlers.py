"""
Bot Handlers - map Telegram updates onto recording operations and replies.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from ..channels.telegram import TelegramBot
from ..core.recording import Operator, Outcome, RecordingStateMachine, Result
from ..utils.auth import is_admin_user
from . import keyboards

logger = logging.getLogger(__name__)

WELCOME = "Yo! I'm ready whenever you are. Press the button to start recording."
ADMIN_NOTE = "\n\n🔧 As an admin, you can also use the admin API for cache and database management."
ASK_TITLE = "Please enter a title for this recording session:"
TITLE_REQUIRED = "Please enter a valid title for the session:"
PAUSED = "Recording paused. Session is on hold. Press resume to continue recording in this session."
RESUMED = "Recording resumed. Continuing session."
NOTHING_TO_RESUME = "No paused recording to resume."
STOPPED = "Recording stopped. Session completed successfully. Press the button to start a new session."
NOTHING_TO_STOP = "No active recording to stop."
CANCELLED = "Recording cancelled before it started. Press the button to start a new session."
STILL_PAUSED = "Recording is currently paused. Press the resume button to continue recording."
NOT_RECORDING = "🎙️ Recording is not active. Press 'START RECORDING' to begin a new session."
FAILED = "❌ Something went wrong while updating the session. Please try again.\n\nError: {error}"

# Shorter texts are left unanswered while idle
NOT_RECORDING_MIN_LENGTH = 3


def started_message(title: str, session_id: str) -> str:
    return (
        "✅ Recording started!\n\n"
        f"📝 Session: \"{title}\"\n"
        f"🆔 ID: {session_id}\n"
        "🎤 Status: ACTIVE\n\n"
        "🗣️ Start chatting and I'll record everything with a 👀 reaction!"
    )


class BotHandlers:
    """Dispatch parsed Telegram updates to the recording state machine."""

    def __init__(self, machine: RecordingStateMachine, bot: TelegramBot,
                 admin_users: Optional[Iterable[int]] = None):
        self.machine = machine
        self.bot = bot
        self.admin_users = list(admin_users or ())
        self._commands = {
            "/record": self._start,
            keyboards.START_RECORDING: self._start,
            "/pause": self._pause,
            keyboards.PAUSE_RECORDING: self._pause,
            "/resume": self._resume,
            keyboards.RESUME_RECORDING: self._resume,
            "/stop": self._stop,
            keyboards.STOP_RECORDING: self._stop,
        }

    async def reply(self, chat_id: str, text: str, reply_markup: Optional[dict] = None) -> None:
        try:
            await self.bot.send_message(chat_id, text, reply_markup=reply_markup)
        except Exception:
            logger.exception(f"Failed to send Telegram reply to chat {chat_id}")

    async def handle_update(self, event: Dict[str, Any]) -> Optional[Result]:
        """
        Handle one parsed update.

        Args:
            event: Output of TelegramBot.parse_update

        Returns:
            The state machine result, or None when nothing was dispatched
        """
        if event.get("type") != "message":
            return None

        operator = Operator(
            chat_id=event["chat_id"],
            user_id=event["user_id"],
            username=event.get("username"),
            first_name=event.get("first_name"),
        )
        text = (event.get("text") or "").strip()
        command = text.split("@", 1)[0] if text.startswith("/") else text

        if command == "/start":
            await self._welcome(operator)
            return None

        handler = self._commands.get(command)
        if handler is not None:
            return await handler(operator)

        result = await self.machine.record_incoming(operator, event.get("text") or "", event.get("date"))
        await self._after_incoming(operator, event, result)
        return result

    async def _welcome(self, operator: Operator) -> None:
        message = WELCOME
        if is_admin_user(operator.user_id, self.admin_users):
            message += ADMIN_NOTE
        await self.reply(operator.chat_id, message, keyboards.START_KEYBOARD)

    async def _start(self, operator: Operator) -> Result:
        result = await self.machine.start_recording(operator)
        await self.reply(operator.chat_id, ASK_TITLE)
        return result

    async def _pause(self, operator: Operator) -> Result:
        result = await self.machine.pause(operator)
        if result.outcome == Outcome.PAUSED:
            await self.reply(operator.chat_id, PAUSED, keyboards.PAUSED_KEYBOARD)
        elif result.outcome == Outcome.FAILED:
            await self._failed(operator, result)
        return result

    async def _resume(self, operator: Operator) -> Result:
        result = await self.machine.resume(operator)
        if result.outcome == Outcome.RESUMED:
            await self.reply(operator.chat_id, RESUMED, keyboards.ACTIVE_KEYBOARD)
        elif result.outcome == Outcome.FAILED:
            await self._failed(operator, result)
        else:
            await self.reply(operator.chat_id, NOTHING_TO_RESUME, keyboards.START_KEYBOARD)
        return result

    async def _stop(self, operator: Operator) -> Result:
        result = await self.machine.stop(operator)
        if result.outcome == Outcome.STOPPED:
            await self.reply(operator.chat_id, STOPPED, keyboards.START_KEYBOARD)
        elif result.outcome == Outcome.CANCELLED:
            await self.reply(operator.chat_id, CANCELLED, keyboards.START_KEYBOARD)
        elif result.outcome == Outcome.FAILED:
            await self._failed(operator, result)
        else:
            await self.reply(operator.chat_id, NOTHING_TO_STOP, keyboards.START_KEYBOARD)
        return result

    async def _failed(self, operator: Operator, result: Result) -> None:
        await self.reply(operator.chat_id, FAILED.format(error=result.error), keyboards.START_KEYBOARD)

    async def _after_incoming(self, operator: Operator, event: Dict[str, Any], result: Result) -> None:
        outcome = result.outcome
        if outcome == Outcome.RECORDED:
            message_id = event.get("message_id")
            if message_id is None:
                return
            try:
                await self.bot.set_message_reaction(operator.chat_id, message_id)
            except Exception:
                logger.warning(f"Failed to react to message {message_id} in chat {operator.chat_id}")
        elif outcome == Outcome.STARTED:
            await self.reply(
                operator.chat_id,
                started_message(result.title, result.session_id),
                keyboards.ACTIVE_KEYBOARD,
            )
        elif outcome == Outcome.TITLE_REQUIRED:
            await self.reply(operator.chat_id, TITLE_REQUIRED)
        elif outcome == Outcome.RECORDING_PAUSED:
            await self.reply(operator.chat_id, STILL_PAUSED, keyboards.PAUSED_KEYBOARD)
        elif outcome == Outcome.NOT_RECORDING:
            if len(event.get("text") or "") > NOT_RECORDING_MIN_LENGTH:
                await self.reply(operator.chat_id, NOT_RECORDING, keyboards.START_KEYBOARD)
        elif outcome == Outcome.FAILED:
            await self._failed(operator, result)
