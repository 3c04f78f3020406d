"""
Telegram Bot API front end.

Delivers tally notifications and answers operator commands. Talks to the Bot
HTTP API directly with httpx: sendMessage for replies and notifications,
getUpdates long polling for incoming commands.

Commands (Spanish aliases kept for existing crews):
    /start, /help (/ayuda)   usage
    /camera N (/camara)      watch camera N
    /status (/estado)        current state of your camera
    /all (/todas)            state of every camera
    /stop (/salir)           stop notifications
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from tally_reconciler import format_state
from tally_store import AssignmentStore
from vmix_client import (
    ConfigurationError,
    KeyedTallyClient,
    SwitcherClientAsync,
    TallyError,
)

API_BASE_URL = "https://api.telegram.org"

CANNOT_REACH_MESSAGE = "❌ Cannot reach the switcher right now. Check the vMix connection."

HELP_MESSAGE = """🎥 *vMix Tally Bot*

*Commands:*
/camera [number] - Assign your camera (e.g. /camera 3)
/status - Current state of your camera
/all - State of every camera
/stop - Stop receiving notifications
/help - Show this help

*States:*
🔴 ON AIR - camera on program
🟡 PREVIEW - camera on preview
⚫ OFF - camera idle"""

COMMAND_ALIASES = {
    "start": "start",
    "help": "help",
    "ayuda": "help",
    "camera": "camera",
    "camara": "camera",
    "status": "status",
    "estado": "status",
    "all": "all",
    "todas": "all",
    "stop": "stop",
    "salir": "stop",
}


class TelegramError(Exception):
    """The Bot API rejected a call or could not be reached."""


def parse_command(text: str) -> Optional[tuple]:
    """
    Split "/camera@MyBot 3" into ("camera", ["3"]).

    Returns:
        (canonical command, arguments), or None for non-command or unknown text
    """
    if not text or not text.startswith("/"):
        return None
    parts = text.split()
    name = parts[0][1:].split("@", 1)[0].lower()
    command = COMMAND_ALIASES.get(name)
    if command is None:
        return None
    return command, parts[1:]


class TelegramBot:
    """Notification sink and command handler for one bot token."""

    def __init__(
        self,
        token: str,
        store: AssignmentStore,
        switcher: SwitcherClientAsync,
        camera_count: int = 8,
        max_camera: int = 20,
        poll_timeout: int = 30,
        retry_delay: float = 5.0,
        api_base_url: str = API_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            token: Bot token from BotFather
            store: Assignment table
            switcher: Client used for on-demand status queries
            camera_count: Cameras listed by /all in bulk mode
            max_camera: Highest camera number /camera accepts
            poll_timeout: getUpdates long-poll timeout in seconds
            retry_delay: Pause after a failed getUpdates call
            api_base_url: Bot API root (overridable for tests or a local API server)
            transport: Optional httpx transport
        """
        self.token = token
        self.store = store
        self.switcher = switcher
        self.camera_count = camera_count
        self.max_camera = max_camera
        self.poll_timeout = poll_timeout
        self.retry_delay = retry_delay
        self.api_url = f"{api_base_url.rstrip('/')}/bot{token}"
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._offset: Optional[int] = None

    async def initialize(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                # Long polls hold the request open for poll_timeout seconds
                timeout=self.poll_timeout + 10,
                transport=self._transport,
            )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        await self.initialize()
        try:
            response = await self._client.post(f"{self.api_url}/{method}", json=payload)
        except httpx.HTTPError as e:
            raise TelegramError(f"{method} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TelegramError(
                f"{method} returned HTTP {response.status_code} with a non-JSON body"
            ) from e

        if not data.get("ok"):
            raise TelegramError(
                f"{method} rejected ({data.get('error_code', response.status_code)}): "
                f"{data.get('description', 'no description')}"
            )
        return data.get("result")

    async def send_message(self, chat_id: int, text: str, markdown: bool = False):
        payload = {"chat_id": chat_id, "text": text}
        if markdown:
            payload["parse_mode"] = "Markdown"
        return await self._call("sendMessage", payload)

    async def deliver(self, operator_id: int, message: str) -> bool:
        """Send a notification. Returns False instead of raising."""
        try:
            await self.send_message(operator_id, message)
            return True
        except TelegramError as e:
            logging.error(f"Error sending notification to {operator_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    async def handle_update(self, update: Dict[str, Any]) -> Optional[str]:
        """
        Handle one getUpdates entry and reply to it.

        Returns:
            The reply text, or None if the update was not a command
        """
        message = update.get("message") or {}
        parsed = parse_command(message.get("text", ""))
        sender = message.get("from")
        if parsed is None or not sender:
            return None

        command, args = parsed
        user_id = sender["id"]
        username = sender.get("username") or sender.get("first_name") or str(user_id)
        chat_id = (message.get("chat") or {}).get("id", user_id)

        handler = getattr(self, f"_cmd_{command}")
        reply = await handler(user_id, username, args)

        try:
            await self.send_message(chat_id, reply, markdown=command in ("start", "help"))
        except TelegramError as e:
            logging.error(f"Error replying to /{command} from {user_id}: {e}")
        return reply

    async def _cmd_start(self, user_id: int, username: str, args: List[str]) -> str:
        return HELP_MESSAGE

    async def _cmd_help(self, user_id: int, username: str, args: List[str]) -> str:
        return HELP_MESSAGE

    async def _cmd_camera(self, user_id: int, username: str, args: List[str]) -> str:
        if not args:
            return "❌ Please give a camera number.\nExample: /camera 3"

        try:
            camera = int(args[0])
        except ValueError:
            camera = 0
        if not 1 <= camera <= self.max_camera:
            return f"❌ Invalid camera number. Use a number between 1 and {self.max_camera}."

        holder = self.store.get(camera)
        if holder is not None and holder.operator_id != user_id:
            return f"❌ Camera {camera} is already assigned to another operator."

        self.store.assign(user_id, username, camera)
        logging.info(f"Operator @{username} ({user_id}) assigned to camera {camera}")
        return (
            f"✅ Camera {camera} assigned.\n"
            f"🔔 You will be notified when it goes on air."
        )

    async def _cmd_status(self, user_id: int, username: str, args: List[str]) -> str:
        assignment = self.store.get_by_operator(user_id)
        if assignment is None:
            return "❌ You have no camera assigned.\nUse /camera [number] to pick one."

        try:
            state = await self.switcher.fetch_camera_state(assignment.camera_number)
        except ConfigurationError as e:
            logging.warning(f"Status query for camera {assignment.camera_number}: {e}")
            return f"❌ Camera {assignment.camera_number} has no tally key configured."
        except TallyError as e:
            logging.error(f"Status query failed: {e}")
            return CANNOT_REACH_MESSAGE

        return f"📹 Camera {assignment.camera_number}\n{format_state(state)}"

    async def _cmd_all(self, user_id: int, username: str, args: List[str]) -> str:
        try:
            snapshot = await self.switcher.fetch_snapshot()
        except TallyError as e:
            logging.error(f"All-cameras query failed: {e}")
            return CANNOT_REACH_MESSAGE

        if isinstance(self.switcher, KeyedTallyClient):
            cameras = list(self.switcher.keys)
        else:
            cameras = range(1, self.camera_count + 1)

        lines = ["📊 State of all cameras:", ""]
        for camera in cameras:
            lines.append(f"Camera {camera}: {format_state(snapshot.state_of(camera), icon_only=True)}")
        return "\n".join(lines)

    async def _cmd_stop(self, user_id: int, username: str, args: List[str]) -> str:
        if self.store.remove(user_id):
            logging.info(f"Operator @{username} ({user_id}) unsubscribed")
            return "✅ You will no longer receive notifications."
        return "ℹ️ You were not subscribed."

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_once(self) -> int:
        """
        Fetch and handle one batch of updates.

        Returns:
            Number of updates handled
        """
        payload: Dict[str, Any] = {"timeout": self.poll_timeout, "allowed_updates": ["message"]}
        if self._offset is not None:
            payload["offset"] = self._offset

        updates = await self._call("getUpdates", payload) or []
        for update in updates:
            self._offset = update["update_id"] + 1
            try:
                await self.handle_update(update)
            except Exception as e:
                logging.error(f"Error handling update {update.get('update_id')}: {e}")
        return len(updates)

    async def get_me(self) -> Dict[str, Any]:
        """Identify the bot; fails fast on a bad token."""
        return await self._call("getMe", {})

    async def run_polling(self, stop_event: asyncio.Event):
        """Long-poll for commands until stop_event is set."""
        await self.initialize()
        while not stop_event.is_set():
            try:
                await self.poll_once()
                continue
            except TelegramError as e:
                logging.error(f"Telegram polling error: {e}. Retrying in {self.retry_delay:.0f}s")
            except Exception as e:
                logging.exception(
                    f"Unexpected error in Telegram polling: {e}. Retrying in {self.retry_delay:.0f}s"
                )
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.retry_delay)
            except asyncio.TimeoutError:
                pass
