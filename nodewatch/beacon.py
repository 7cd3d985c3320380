from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from nodewatch.errors import TransportError
from nodewatch.http import HttpClient

HEALTH_SYNCED = 200
HEALTH_SYNCING = 206


@dataclass(frozen=True)
class SyncingInfo:
	head_slot: int
	sync_distance: int
	is_syncing: Optional[bool] = None


class BeaconClient(HttpClient):
	"""Beacon Node API consensus-клиента (Lighthouse и совместимые)."""

	async def health(self) -> int:
		# любой HTTP-код: ответ узла; TransportError только при недоступности
		status, _ = await self._get("/eth/v1/node/health", any_status=True)
		return status

	async def syncing(self) -> SyncingInfo:
		body = await self._get_json("/eth/v1/node/syncing")
		try:
			data = body.get("data", body)
			return SyncingInfo(
				head_slot=int(data["head_slot"]),
				sync_distance=int(data["sync_distance"]),
				is_syncing=data.get("is_syncing"),
			)
		except (AttributeError, KeyError, TypeError, ValueError) as e:
			raise TransportError(f"Unexpected /eth/v1/node/syncing payload: {body!r:.200}") from e

	async def version(self) -> str:
		body = await self._get_json("/eth/v1/node/version")
		try:
			return str(body.get("data", body)["version"])
		except (AttributeError, KeyError, TypeError) as e:
			raise TransportError(f"Unexpected /eth/v1/node/version payload: {body!r:.200}") from e
