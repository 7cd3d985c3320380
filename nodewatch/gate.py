from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from nodewatch.policy import AlertKey


class AlertGate:
	"""Дедупликация уведомлений по ключу алерта.

	Хранит время последней отправки для каждого ключа (монотонные часы).
	Пока состояние держится, повтор внутри окна cooldown подавляется.
	`clear` вызывается при восстановлении: следующий сбой уведомит сразу,
	не дожидаясь конца окна.
	"""

	def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
		self._clock = clock
		self._fired_at: Dict[AlertKey, float] = {}

	def should_fire(self, key: AlertKey, cooldown_minutes: Optional[int]) -> bool:
		now = self._clock()
		last = self._fired_at.get(key)
		if last is None:
			self._fired_at[key] = now
			return True
		# INFO: один раз, до явного сброса
		if cooldown_minutes is None:
			return False
		if now - last >= cooldown_minutes * 60:
			self._fired_at[key] = now
			return True
		return False

	def clear(self, key: AlertKey) -> None:
		self._fired_at.pop(key, None)

	def is_active(self, key: AlertKey) -> bool:
		return key in self._fired_at

	def snapshot(self) -> Dict[str, float]:
		return {k.value: v for k, v in self._fired_at.items()}
