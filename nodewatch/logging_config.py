from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional


class JsonFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:
		payload: dict[str, Any] = {
			"level": record.levelname,
			"logger": record.name,
			"msg": record.getMessage(),
			"time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
		}
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: Optional[str] = None) -> None:
	"""Инициализация логирования; формат JSON включается через переменную окружения."""
	level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
	use_json = os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")
	root = logging.getLogger()
	root.setLevel(level)
	# Очистить имеющиеся обработчики
	for h in list(root.handlers):
		root.removeHandler(h)
		h.close()
	handler = logging.StreamHandler()
	if use_json:
		handler.setFormatter(JsonFormatter())
	else:
		handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
	root.addHandler(handler)
	# aiohttp шумит на INFO
	logging.getLogger("aiohttp").setLevel(logging.WARNING)
