from __future__ import annotations

import os
from typing import List, Optional

from .base import CompositeNotifier, Notifier
from .log import LogNotifier
from .telegram import TelegramNotifier
from .webhook import WebhookNotifier


def build_notifier(*, enabled: bool, telegram_bot_token: Optional[str] = None, telegram_chat_id: Optional[str] = None, webhook_url: Optional[str] = None) -> Notifier:
	"""Агрегатор каналов. Лог есть всегда; при enabled=False внешние каналы не подключаются."""
	channels: List[Notifier] = [LogNotifier()]
	if not enabled:
		return CompositeNotifier(channels)
	if telegram_bot_token and telegram_chat_id:
		channels.append(TelegramNotifier(telegram_bot_token, telegram_chat_id))
	if webhook_url:
		channels.append(WebhookNotifier(webhook_url))
	return CompositeNotifier(channels)


def build_notifier_from_env() -> Notifier:
	"""Построить агрегатор нотификаторов на основе переменных окружения (лог, Telegram, Webhook)."""
	return build_notifier(
		enabled=os.getenv("NOTIFY_ENABLED", "true").lower() in ("1", "true", "yes"),
		telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
		telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID"),
		webhook_url=os.getenv("WEBHOOK_URL"),
	)
