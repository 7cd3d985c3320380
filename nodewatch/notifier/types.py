from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass
class AlertEvent:
	key: Optional[str]
	level: str  # info, warn, error
	title: str
	message: str
	severity: Optional[str] = None
	ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
