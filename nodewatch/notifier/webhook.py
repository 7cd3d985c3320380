from __future__ import annotations

import asyncio

import aiohttp

from nodewatch.errors import DeliveryError

from .base import Notifier
from .types import AlertEvent


class WebhookNotifier(Notifier):
	"""Простой отправитель уведомлений через HTTP Webhook."""
	def __init__(self, url: str, *, connect_timeout_s: float = 3.0, read_timeout_s: float = 5.0) -> None:
		self._url = url
		self._timeout = aiohttp.ClientTimeout(connect=connect_timeout_s, total=connect_timeout_s + read_timeout_s)

	async def send(self, event: AlertEvent) -> None:
		"""Отправить событие в виде JSON на указанный URL."""
		payload = {
			"key": event.key,
			"level": event.level,
			"severity": event.severity,
			"title": event.title,
			"message": event.message,
			"ts": event.ts.isoformat(),
		}
		try:
			async with aiohttp.ClientSession(timeout=self._timeout) as s:
				async with s.post(self._url, json=payload) as resp:
					if resp.status >= 300:
						raise DeliveryError(f"webhook responded HTTP {resp.status}")
		except (asyncio.TimeoutError, aiohttp.ClientError) as e:
			raise DeliveryError(f"webhook unreachable: {e}") from e
