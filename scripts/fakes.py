# scripts/fakes.py
"""
In-memory заменители внешних клиентов для тестов: без сети.
"""

import asyncio
import os
import sys
import time
from typing import Dict, List, Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nodewatch.beacon import SyncingInfo  # type: ignore
from nodewatch.config import Settings  # type: ignore
from nodewatch.errors import DeliveryError, TransportError  # type: ignore
from nodewatch.notifier import AlertEvent, Notifier  # type: ignore
from nodewatch.rpc import BlockInfo  # type: ignore
from nodewatch.versions import Release  # type: ignore


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeClient:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None


class FakeExecution(FakeClient):
    def __init__(self, height: int = 100, *, chain_id: int = 1, peers: int = 25,
                 version: str = "reth/v1.2.3-abcdef/x86_64-unknown-linux-gnu",
                 block_timestamp: Optional[int] = None, hashes: Optional[Dict[int, str]] = None,
                 fail: bool = False, delay_s: float = 0.0, url: str = "http://node:8545",
                 ws_url: Optional[str] = "ws://node:8546"):
        self.height = height
        self.chain_id = chain_id
        self.peers = peers
        self.version = version
        self.block_timestamp = block_timestamp
        self.hashes = hashes or {}
        self.fail = fail
        self.delay_s = delay_s
        self.url = url
        self.ws_url = ws_url
        # каждый элемент: список высот одного соединения или исключение
        self.sessions: List = []
        self.subscribe_calls = 0

    async def _maybe_fail(self):
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail:
            raise TransportError(f"{self.url} unreachable")

    async def get_height(self) -> int:
        await self._maybe_fail()
        return self.height

    async def get_block(self, number_or_tag="latest") -> BlockInfo:
        await self._maybe_fail()
        number = self.height if number_or_tag == "latest" else int(number_or_tag)
        ts = self.block_timestamp if self.block_timestamp is not None else int(time.time())
        return BlockInfo(number=number, hash=self.hashes.get(number, f"0x{number:064x}"), timestamp=ts)

    async def get_network_id(self) -> int:
        await self._maybe_fail()
        return self.chain_id

    async def get_peer_count(self) -> int:
        await self._maybe_fail()
        return self.peers

    async def get_client_version(self) -> str:
        await self._maybe_fail()
        return self.version

    async def subscribe_new_blocks(self):
        self.subscribe_calls += 1
        session = self.sessions.pop(0) if self.sessions else TransportError("connection refused")
        if isinstance(session, Exception):
            raise session
        for h in session:
            yield h
        raise TransportError("connection closed")


class FakeBeacon(FakeClient):
    def __init__(self, status: int = 200, *, version: str = "Lighthouse/v5.1.0-1a2b3c4/x86_64-linux", fail: bool = False):
        self.status = status
        self._version = version
        self.fail = fail

    async def health(self) -> int:
        if self.fail:
            raise TransportError("beacon unreachable")
        return self.status

    async def syncing(self):
        return SyncingInfo(head_slot=9000000, sync_distance=42, is_syncing=True)

    async def version(self) -> str:
        if self.fail:
            raise TransportError("beacon unreachable")
        return self._version


class FakeMetrics(FakeClient):
    def __init__(self, values: Optional[Dict[str, float]] = None, *, fail: bool = False):
        self.values = values if values is not None else {"process_resident_memory_bytes": 4 * 1024 ** 3}
        self.fail = fail

    async def fetch(self) -> Dict[str, float]:
        if self.fail:
            raise TransportError("metrics unreachable")
        return dict(self.values)


class FakeReleases(FakeClient):
    def __init__(self, tag: str = "v1.2.3", *, fail: bool = False, delay_s: float = 0.0):
        self.tag = tag
        self.fail = fail
        self.delay_s = delay_s
        self.calls = 0

    async def latest(self) -> Release:
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail:
            raise TransportError("github unreachable")
        return Release(tag_name=self.tag, version=self.tag.lstrip("v"), published_at="2026-01-01T00:00:00Z", html_url=f"https://example.com/{self.tag}")


class FakeNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.events: List[AlertEvent] = []
        self.fail = fail

    async def send(self, event: AlertEvent) -> None:
        if self.fail:
            raise DeliveryError("channel down")
        self.events.append(event)

    def keys(self) -> List[str]:
        return [e.key for e in self.events]


def make_settings(**overrides) -> Settings:
    base = dict(
        monitored_rpc="http://node:8545",
        monitored_ws="ws://node:8546",
        reference_rpcs=["http://ref1:8545", "http://ref2:8545"],
        execution_releases_url=None,
        consensus_releases_url=None,
        notify_enabled=False,
    )
    base.update(overrides)
    return Settings(**base)
