from __future__ import annotations

import logging
from typing import Dict, Optional

from prometheus_client.parser import text_string_to_metric_families

from nodewatch.errors import ParseError
from nodewatch.http import HttpClient

logger = logging.getLogger(__name__)

# reth отдаёт память процесса под обоими именами в зависимости от версии
MEMORY_KEYS = ("process_resident_memory_bytes", "reth_process_resident_memory_bytes")


def parse_metrics(text: str) -> Dict[str, float]:
	"""Текст Prometheus -> плоский словарь имя -> значение (метки отбрасываются).

	Нераспознанные строки пропускаются. Для повторяющихся имён побеждает последнее значение.
	"""
	values: Dict[str, float] = {}
	bad = 0
	for line in text.splitlines():
		line = line.strip()
		if not line or line.startswith("#"):
			continue
		try:
			for family in text_string_to_metric_families(line + "\n"):
				for sample in family.samples:
					values[sample.name] = float(sample.value)
		except (ValueError, IndexError, TypeError):
			bad += 1
	if bad:
		logger.debug("Skipped %s unparsable metrics lines", bad)
	if not values and text.strip():
		raise ParseError("no parsable samples in metrics text")
	return values


def resident_memory_bytes(values: Dict[str, float]) -> Optional[float]:
	for key in MEMORY_KEYS:
		if key in values:
			return values[key]
	return None


class MetricsClient(HttpClient):
	async def fetch(self) -> Dict[str, float]:
		_, text = await self._get()
		return parse_metrics(text)
