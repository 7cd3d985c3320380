from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from nodewatch.policy import AlertKey, SeverityTier, default_tier


class ProbeStatus(str, enum.Enum):
	OK = "OK"
	WARNING = "WARNING"
	ERROR = "ERROR"
	SKIPPED = "SKIPPED"
	UNKNOWN = "UNKNOWN"


# ERROR > WARNING > OK; SKIPPED/UNKNOWN общий уровень не поднимают
_RANK = {
	ProbeStatus.OK: 0,
	ProbeStatus.SKIPPED: 0,
	ProbeStatus.UNKNOWN: 0,
	ProbeStatus.WARNING: 1,
	ProbeStatus.ERROR: 2,
}


@dataclass(frozen=True)
class ProbeResult:
	name: str
	status: ProbeStatus
	message: str
	alert_key: Optional[AlertKey] = None
	tier: Optional[SeverityTier] = None
	data: Mapping[str, Any] = field(default_factory=dict)

	@property
	def triggered(self) -> bool:
		return self.alert_key is not None and self.status in (ProbeStatus.WARNING, ProbeStatus.ERROR)


def ok(name: str, message: str, **data: Any) -> ProbeResult:
	return ProbeResult(name=name, status=ProbeStatus.OK, message=message, data=data)


def skipped(name: str, message: str) -> ProbeResult:
	return ProbeResult(name=name, status=ProbeStatus.SKIPPED, message=message)


def unknown(name: str, message: str, **data: Any) -> ProbeResult:
	return ProbeResult(name=name, status=ProbeStatus.UNKNOWN, message=message, data=data)


def failed(name: str, message: str, **data: Any) -> ProbeResult:
	"""ERROR без ключа алерта: сбой транспорта, уведомление не отправляется."""
	return ProbeResult(name=name, status=ProbeStatus.ERROR, message=message, data=data)


def alerting(name: str, status: ProbeStatus, key: AlertKey, message: str, *, tier: Optional[SeverityTier] = None, **data: Any) -> ProbeResult:
	return ProbeResult(
		name=name,
		status=status,
		message=message,
		alert_key=key,
		tier=tier or default_tier(key),
		data=data,
	)


def worst_status(results: "list[ProbeResult]") -> ProbeStatus:
	worst = ProbeStatus.OK
	for r in results:
		if _RANK[r.status] > _RANK[worst]:
			worst = r.status
	return worst
