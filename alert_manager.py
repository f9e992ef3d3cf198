"""
RangeGuard LP - Telegram Alert Manager
Handles notifications for range alerts, rebalances, errors and system events,
and answers the /start and /status bot commands
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import requests

from collaborators import Notifier

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramAlertManager(Notifier):
    """Manages Telegram notifications for the position monitor"""

    def __init__(self, config):
        """
        Initialize Telegram alert manager

        Args:
            config: Configuration object
        """
        self.config = config
        self.bot_token = config.TELEGRAM_BOT_TOKEN
        self.chat_id = config.TELEGRAM_CHAT_ID
        self.enabled = config.TELEGRAM_ENABLED

        if self.enabled:
            logger.info("Telegram alerts enabled")
        else:
            logger.info("Telegram alerts disabled (missing bot token or chat ID)")

    def _api_url(self, method: str) -> str:
        return f"{TELEGRAM_API_URL}/bot{self.bot_token}/{method}"

    def test_connection(self) -> bool:
        """
        Test Telegram bot connection

        Returns:
            True if connection successful, False otherwise
        """
        try:
            response = requests.get(self._api_url("getMe"), timeout=10)
            return response.status_code == 200
        except Exception as e:
            logger.error(f"Telegram connection test failed: {e}")
            return False

    def _send_message(self, message: str, parse_mode: Optional[str] = None,
                      chat_id: Optional[str] = None) -> bool:
        """
        Send message to Telegram

        Args:
            message: Message to send
            parse_mode: Message parse mode (HTML or Markdown), plain text if None
            chat_id: Override the configured chat

        Returns:
            True if message sent successfully, False otherwise
        """
        if not self.enabled:
            logger.debug("Telegram alerts disabled - not sending message")
            return False

        try:
            data = {
                'chat_id': chat_id or self.chat_id,
                'text': message,
                'disable_web_page_preview': True
            }
            if parse_mode:
                data['parse_mode'] = parse_mode

            response = requests.post(self._api_url("sendMessage"), data=data, timeout=10)

            if response.status_code == 200:
                logger.debug("Telegram message sent successfully")
                return True
            else:
                logger.error(f"Failed to send Telegram message: {response.status_code} - {response.text}")
                return False

        except Exception as e:
            logger.error(f"Error sending Telegram message: {e}")
            return False

    async def send(self, message: str) -> bool:
        """Send a plain text alert without blocking the event loop"""
        logger.info(f"Alert: {message.splitlines()[0] if message else ''}")
        try:
            return await asyncio.to_thread(self._send_message, message)
        except Exception as e:
            logger.error(f"Error dispatching Telegram message: {e}")
            return False

    async def send_startup_notification(self, pool_name: str, chain_name: str,
                                        wallet_address: str, interval_seconds: int) -> bool:
        """
        Send startup notification

        Args:
            pool_name: Human readable pool description
            chain_name: Chain name
            wallet_address: Wallet address
            interval_seconds: Monitoring interval

        Returns:
            True if notification sent successfully
        """
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        message = f"""
🚀 <b>Position Monitor Started</b>
⏰ {timestamp}

🌐 <b>Configuration:</b>
  • Chain: {chain_name}
  • Pool: {pool_name}
  • Wallet: <code>{wallet_address[:10]}...{wallet_address[-8:]}</code>
  • Interval: {interval_seconds}s

✅ Monitoring started
        """.strip()

        return await asyncio.to_thread(self._send_message, message, "HTML")

    async def send_shutdown_notification(self, reason: str = "Manual shutdown") -> bool:
        """
        Send shutdown notification

        Args:
            reason: Reason for shutdown

        Returns:
            True if notification sent successfully
        """
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        message = f"""
🛑 <b>Position Monitor Stopped</b>
⏰ {timestamp}

📝 <b>Reason:</b> {reason}
        """.strip()

        return await asyncio.to_thread(self._send_message, message, "HTML")


CommandHandler = Callable[[], Awaitable[str]]


class TelegramCommandListener:
    """
    Long-polls getUpdates and answers bot commands from the configured chat.

    Handlers are coroutines returning the reply text. Messages from other
    chats are ignored.
    """

    def __init__(self, alert_manager: TelegramAlertManager, poll_timeout: int = 30):
        self.alert_manager = alert_manager
        self.poll_timeout = poll_timeout
        self.handlers: Dict[str, CommandHandler] = {}
        self._offset: Optional[int] = None
        self._running = False

    def register(self, command: str, handler: CommandHandler):
        self.handlers[command.lstrip('/').lower()] = handler

    def _get_updates(self) -> list:
        params: Dict[str, Any] = {'timeout': self.poll_timeout, 'allowed_updates': '["message"]'}
        if self._offset is not None:
            params['offset'] = self._offset

        response = requests.get(
            self.alert_manager._api_url("getUpdates"),
            params=params,
            timeout=self.poll_timeout + 10
        )
        response.raise_for_status()
        return response.json().get('result', [])

    @staticmethod
    def parse_command(text: str) -> Optional[str]:
        """Extract the command name from '/status@MyBot args'"""
        if not text or not text.startswith('/'):
            return None
        return text.split()[0][1:].split('@')[0].lower()

    async def handle_update(self, update: Dict[str, Any]):
        self._offset = update['update_id'] + 1

        message = update.get('message') or {}
        chat_id = str((message.get('chat') or {}).get('id', ''))
        if chat_id != str(self.alert_manager.chat_id):
            logger.debug(f"Ignoring update from chat {chat_id}")
            return

        command = self.parse_command(message.get('text', ''))
        handler = self.handlers.get(command) if command else None
        if handler is None:
            return

        try:
            reply = await handler()
        except Exception as e:
            logger.error(f"Command /{command} failed: {e}")
            reply = f"❌ /{command} failed: {e}"

        await asyncio.to_thread(self.alert_manager._send_message, reply, None, chat_id)

    async def run(self):
        """Poll until stop() is called"""
        if not self.alert_manager.enabled:
            logger.info("Telegram commands disabled (alerts not configured)")
            return

        self._running = True
        logger.info(f"Listening for Telegram commands: {', '.join('/' + c for c in self.handlers)}")

        while self._running:
            try:
                updates = await asyncio.to_thread(self._get_updates)
            except Exception as e:
                logger.warning(f"Telegram getUpdates failed: {e}")
                await asyncio.sleep(5)
                continue

            if not self._running:
                break

            for update in updates:
                await self.handle_update(update)

    def stop(self):
        self._running = False
