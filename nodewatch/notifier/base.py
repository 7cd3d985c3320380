from __future__ import annotations

import abc
import logging
from typing import Iterable

from nodewatch.errors import DeliveryError

from .types import AlertEvent

logger = logging.getLogger(__name__)


class Notifier(abc.ABC):
	@abc.abstractmethod
	async def send(self, event: AlertEvent) -> None:
		"""Доставить событие; при сбое: DeliveryError."""
		...


class CompositeNotifier(Notifier):
	def __init__(self, channels: Iterable[Notifier]):
		self._channels = list(channels)

	@property
	def channels(self) -> list:
		return list(self._channels)

	async def send(self, event: AlertEvent) -> None:
		for ch in self._channels:
			try:
				await ch.send(event)
			except DeliveryError as e:
				# без повторов и без новых алертов о самом канале
				logger.warning("delivery via %s failed: %s", type(ch).__name__, e)
