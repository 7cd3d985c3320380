from __future__ import annotations

from typing import Optional

from prometheus_client import Counter, Gauge, CONTENT_TYPE_LATEST, generate_latest

# Глобальный реестр метрик (используется по умолчанию)

probe_results_total = Counter(
	"nodewatch_probe_results_total",
	"Результаты проб по имени и статусу",
	labelnames=("probe", "status"),
)

alert_decisions_total = Counter(
	"nodewatch_alert_decisions_total",
	"Решения гейта по ключу алерта: sent, suppressed, cleared",
	labelnames=("key", "outcome"),
)

block_height = Gauge(
	"nodewatch_block_height",
	"Высота блока: monitored или canonical",
	labelnames=("source",),
)

reconnect_attempts = Gauge(
	"nodewatch_reconnect_attempts",
	"Текущая попытка переподключения push-подписки (0: подключено)",
)


def record_probe(probe: str, status: str) -> None:
	probe_results_total.labels(probe=probe, status=status).inc()


def record_alert(key: str, outcome: str) -> None:
	alert_decisions_total.labels(key=key, outcome=outcome).inc()


def set_height(source: str, value: Optional[int]) -> None:
	if value is None:
		return
	block_height.labels(source=source).set(int(value))


def set_reconnect_attempt(n: int) -> None:
	reconnect_attempts.set(max(0, int(n)))


def render_metrics() -> tuple[bytes, str]:
	"""Вернуть полезную нагрузку метрик и тип контента для FastAPI-роута."""
	return generate_latest(), CONTENT_TYPE_LATEST
