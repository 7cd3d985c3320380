from __future__ import annotations


class MonitorError(Exception):
	"""Базовое исключение монитора."""


class TransportError(MonitorError):
	"""RPC/HTTP недоступен, ответил не 2xx или вернул JSON-RPC ошибку."""


class NoReferenceAvailable(MonitorError):
	"""Ни один референсный узел не ответил."""


class ParseError(MonitorError):
	"""Не удалось разобрать версию или текст метрик."""


class DeliveryError(MonitorError):
	"""Канал уведомлений не доставил сообщение. Повторов нет."""


class FatalMonitorError(MonitorError):
	"""Исчерпан лимит переподключений push-режима."""
