from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from nodewatch.errors import TransportError
from nodewatch.http import HttpClient
from nodewatch.policy import SeverityTier

Version = Tuple[int, int, int]

# reth/v1.2.3-abcdef/x86_64-unknown-linux-gnu, Lighthouse/v5.1.0-1a2b3c/..., v1.2.3, 1.2.3
_VERSION_RE = re.compile(r"(?:^|[/\s])v?(\d+)\.(\d+)\.(\d+)(?=$|[^\d.])")


def parse_version(text: Optional[str]) -> Optional[Version]:
	"""Извлечь (major, minor, patch) из строки версии или баннера клиента. None: не распознано."""
	if not text or not isinstance(text, str):
		return None
	m = _VERSION_RE.search(text.strip())
	if m is None:
		return None
	return int(m.group(1)), int(m.group(2)), int(m.group(3))


class VersionGap(str, enum.Enum):
	MAJOR = "major"
	MINOR = "minor"
	PATCH = "patch"


_GAP_TIERS = {
	VersionGap.MAJOR: SeverityTier.CRITICAL_URGENT,
	VersionGap.MINOR: SeverityTier.HIGH,
	VersionGap.PATCH: SeverityTier.LOW,
}


def compare_versions(current: Version, latest: Version) -> Optional[VersionGap]:
	"""Отставание current от latest; None: версия актуальна (или новее)."""
	for gap, have, want in zip((VersionGap.MAJOR, VersionGap.MINOR, VersionGap.PATCH), current, latest):
		if have < want:
			return gap
		if have > want:
			return None
	return None


def gap_tier(gap: VersionGap) -> SeverityTier:
	return _GAP_TIERS[gap]


def format_version(v: Version) -> str:
	return "%d.%d.%d" % v


@dataclass(frozen=True)
class Release:
	tag_name: str
	version: str
	published_at: Optional[str] = None
	html_url: Optional[str] = None


class ReleaseClient(HttpClient):
	"""Последний релиз из GitHub API (`/repos/<owner>/<repo>/releases/latest`)."""

	def __init__(self, url: str, **kwargs) -> None:
		headers = {"Accept": "application/vnd.github+json", "User-Agent": "nodewatch/0.1"}
		super().__init__(url, headers=headers, **kwargs)

	async def latest(self) -> Release:
		body = await self._get_json()
		if not isinstance(body, dict) or not body.get("tag_name"):
			raise TransportError(f"Unexpected release payload from {self.base_url}")
		tag = str(body["tag_name"])
		return Release(
			tag_name=tag,
			version=tag[1:] if tag.startswith("v") else tag,
			published_at=body.get("published_at"),
			html_url=body.get("html_url"),
		)
