from __future__ import annotations

import logging
from typing import Iterable

from nodewatch import metrics
from nodewatch.errors import DeliveryError
from nodewatch.gate import AlertGate
from nodewatch.notifier import AlertEvent, Notifier
from nodewatch.policy import AlertKey, SeverityTier, cooldown_minutes, notify_level
from nodewatch.types import ProbeResult, ProbeStatus

logger = logging.getLogger(__name__)


class AlertDispatcher:
	"""Пропускает результаты проб через гейт и отправляет то, что гейт разрешил.

	OK сбрасывает все ключи пробы; сработавшее условие сбрасывает остальные
	ключи пробы и запрашивает гейт по своему ключу. SKIPPED, UNKNOWN и ERROR
	без ключа состояние гейта не трогают.
	"""

	def __init__(self, gate: AlertGate, notifier: Notifier) -> None:
		self.gate = gate
		self._notifier = notifier

	async def process(self, result: ProbeResult, owned_keys: Iterable[AlertKey] = ()) -> bool:
		owned = tuple(owned_keys)
		if result.status == ProbeStatus.OK:
			for key in owned:
				self._clear(key)
			return False
		if not result.triggered:
			return False
		for key in owned:
			if key != result.alert_key:
				self._clear(key)
		tier = result.tier or SeverityTier.HIGH
		return await self.fire(result.alert_key, tier, title=f"{result.name}: {result.status.value}", message=result.message)

	async def fire(self, key: AlertKey, tier: SeverityTier, *, title: str, message: str) -> bool:
		if not self.gate.should_fire(key, cooldown_minutes(tier)):
			metrics.record_alert(key.value, "suppressed")
			logger.debug("alert %s suppressed by cooldown", key.value)
			return False
		metrics.record_alert(key.value, "sent")
		await self.notify(key, tier, title=title, message=message)
		return True

	async def notify(self, key: AlertKey, tier: SeverityTier, *, title: str, message: str) -> None:
		"""Отправка в обход гейта (используется для фатального уведомления)."""
		event = AlertEvent(key=key.value, level=notify_level(tier), title=title, message=message, severity=tier.value)
		try:
			await self._notifier.send(event)
		except DeliveryError as e:
			logger.warning("alert %s not delivered: %s", key.value, e)

	def _clear(self, key: AlertKey) -> None:
		if self.gate.is_active(key):
			logger.info("alert %s recovered", key.value)
			metrics.record_alert(key.value, "cleared")
		self.gate.clear(key)
