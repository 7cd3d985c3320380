from __future__ import annotations

import asyncio

import aiohttp

from nodewatch.errors import DeliveryError

from .base import Notifier
from .types import AlertEvent

_ICONS = {"info": "ℹ️", "warn": "⚠️", "error": "🚨"}


def format_message(event: AlertEvent) -> str:
	icon = _ICONS.get(event.level, "")
	severity = (event.severity or event.level).upper()
	text = f"{icon} [{severity}] {event.title}\n{event.message}\nkey={event.key} ts={event.ts.isoformat()}"
	# ограничение длины сообщения Telegram ~4096 символов
	return text[:4096]


class TelegramNotifier(Notifier):
	def __init__(self, bot_token: str, chat_id: str, *, connect_timeout_s: float = 3.0, read_timeout_s: float = 5.0) -> None:
		self._bot_token = bot_token
		self._chat_id = chat_id
		self._connect_timeout_s = connect_timeout_s
		self._read_timeout_s = read_timeout_s

	async def send(self, event: AlertEvent) -> None:
		url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
		payload = {"chat_id": self._chat_id, "text": format_message(event)}

		timeout = aiohttp.ClientTimeout(connect=self._connect_timeout_s, total=self._connect_timeout_s + self._read_timeout_s)
		try:
			async with aiohttp.ClientSession(timeout=timeout) as session:
				async with session.post(url, json=payload) as resp:
					_ = await resp.read()
					if resp.status >= 300:
						raise DeliveryError(f"telegram responded HTTP {resp.status}")
		except (asyncio.TimeoutError, aiohttp.ClientError) as e:
			# токен в URL, поэтому в сообщение попадает только тип ошибки
			raise DeliveryError(f"telegram unreachable: {type(e).__name__}") from e
