from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from nodewatch.errors import NoReferenceAvailable, ParseError, TransportError
from nodewatch.node_metrics import resident_memory_bytes
from nodewatch.policy import AlertKey
from nodewatch.reference import resolve_canonical_height, resolve_reference_hash
from nodewatch.types import ProbeResult, ProbeStatus, alerting, failed, ok, skipped, unknown
from nodewatch.versions import Release, compare_versions, format_version, gap_tier, parse_version

logger = logging.getLogger(__name__)

CHAIN_ID = "chain_id"
SYNC_STATUS = "sync_status"
BLOCK_TIMESTAMP = "block_timestamp"
BLOCK_CONSISTENCY = "block_consistency"
HEARTBEAT = "heartbeat"
BLOCK_INTERVAL = "block_interval"
PEERS = "peers"
METRICS = "metrics"
MEMORY = "memory"
CONSENSUS_SYNC = "consensus_sync"
EXECUTION_VERSION = "execution_version"
CONSENSUS_VERSION = "consensus_version"

# ключи, которыми владеет проба: при OK все сбрасываются
PROBE_KEYS: Dict[str, Tuple[AlertKey, ...]] = {
	CHAIN_ID: (AlertKey.WRONG_CHAIN, AlertKey.RPC_UNREACHABLE),
	SYNC_STATUS: (AlertKey.OUT_OF_SYNC, AlertKey.AHEAD_OF_CANONICAL),
	BLOCK_TIMESTAMP: (AlertKey.STALE_BLOCK,),
	BLOCK_CONSISTENCY: (AlertKey.BLOCK_HASH_MISMATCH,),
	HEARTBEAT: (AlertKey.NO_NEW_BLOCKS,),
	BLOCK_INTERVAL: (AlertKey.BLOCK_PRODUCTION_STALL,),
	PEERS: (AlertKey.LOW_PEERS,),
	METRICS: (AlertKey.METRICS_UNREACHABLE,),
	MEMORY: (AlertKey.HIGH_MEMORY,),
	CONSENSUS_SYNC: (AlertKey.CONSENSUS_NOT_SYNCED, AlertKey.CONSENSUS_UNREACHABLE),
	EXECUTION_VERSION: (AlertKey.EXECUTION_OUTDATED,),
	CONSENSUS_VERSION: (AlertKey.CONSENSUS_OUTDATED,),
}

_MB = 1024 * 1024


async def check_chain_id(client: Any, expected: int) -> ProbeResult:
	try:
		chain_id = await client.get_network_id()
	except TransportError as e:
		return alerting(CHAIN_ID, ProbeStatus.ERROR, AlertKey.RPC_UNREACHABLE, f"Monitored RPC unreachable: {e}")
	if chain_id != expected:
		return alerting(
			CHAIN_ID, ProbeStatus.ERROR, AlertKey.WRONG_CHAIN,
			f"Wrong chain ID: expected {expected}, got {chain_id}",
			expected=expected, actual=chain_id,
		)
	return ok(CHAIN_ID, f"Chain ID: {chain_id}", actual=chain_id)


def evaluate_sync(local: int, canonical: int, *, max_delay: int = 10, ahead_tolerance: int = 5) -> ProbeResult:
	delay = canonical - local
	if delay > max_delay:
		return alerting(
			SYNC_STATUS, ProbeStatus.WARNING, AlertKey.OUT_OF_SYNC,
			f"Node is {delay} blocks behind (monitored: {local}, canonical: {canonical})",
			local=local, canonical=canonical, delay=delay,
		)
	if delay < -ahead_tolerance:
		return alerting(
			SYNC_STATUS, ProbeStatus.WARNING, AlertKey.AHEAD_OF_CANONICAL,
			f"Node reports block {local} but canonical is {canonical} (ahead by {-delay})",
			local=local, canonical=canonical, delay=delay,
		)
	return ok(SYNC_STATUS, f"In sync: block {local} ({delay} blocks behind)", local=local, canonical=canonical, delay=delay)


async def check_sync_status(client: Any, references: Sequence[Any], *, max_delay: int = 10, ahead_tolerance: int = 5, timeout_s: float = 10.0) -> ProbeResult:
	try:
		local = await client.get_height()
	except TransportError as e:
		return failed(SYNC_STATUS, f"Failed to check sync status: {e}")
	try:
		canonical = await resolve_canonical_height(references, timeout_s)
	except NoReferenceAvailable as e:
		return unknown(SYNC_STATUS, f"Sync status indeterminate: {e}", local=local)
	return evaluate_sync(local, canonical, max_delay=max_delay, ahead_tolerance=ahead_tolerance)


async def check_block_timestamp(client: Any, *, threshold_s: int = 30, now: Optional[float] = None) -> ProbeResult:
	try:
		block = await client.get_block("latest")
	except TransportError as e:
		return failed(BLOCK_TIMESTAMP, f"Failed to check block timestamp: {e}")
	age = int((time.time() if now is None else now) - block.timestamp)
	if age > threshold_s:
		return alerting(
			BLOCK_TIMESTAMP, ProbeStatus.WARNING, AlertKey.STALE_BLOCK,
			f"Latest block {block.number} is {age}s old (threshold: {threshold_s}s)",
			number=block.number, age_s=age,
		)
	return ok(BLOCK_TIMESTAMP, f"Latest block timestamp is {age}s old", number=block.number, age_s=age)


async def check_block_consistency(client: Any, references: Sequence[Any], *, depth: int = 5, timeout_s: float = 10.0) -> ProbeResult:
	"""Сравнить хэш блока на глубине `depth` от вершины с референсами (глубина отсекает шум реоргов)."""
	try:
		tip = await client.get_height()
		number = max(0, tip - depth)
		local = await client.get_block(number)
	except TransportError as e:
		return failed(BLOCK_CONSISTENCY, f"Failed to check block consistency: {e}")
	try:
		reference_hash = await resolve_reference_hash(references, number, timeout_s)
	except NoReferenceAvailable:
		return unknown(BLOCK_CONSISTENCY, "Could not verify block consistency with reference nodes", number=number)
	return evaluate_hashes(number, local.hash, reference_hash)


def evaluate_hashes(number: int, local_hash: str, reference_hash: str) -> ProbeResult:
	if local_hash.lower() != reference_hash.lower():
		return alerting(
			BLOCK_CONSISTENCY, ProbeStatus.ERROR, AlertKey.BLOCK_HASH_MISMATCH,
			f"Fork detected: block hash mismatch at {number}! Monitored: {local_hash}, Canonical: {reference_hash}",
			number=number, local_hash=local_hash, reference_hash=reference_hash,
		)
	return ok(BLOCK_CONSISTENCY, f"Block consistency verified (block {number})", number=number, hash=local_hash)


class BlockTracker:
	"""Помнит, когда монитор последний раз видел новый блок (монотонные часы)."""

	def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
		self._clock = clock
		self.height: Optional[int] = None
		self.last_seen_at: Optional[float] = None
		self.last_gap_s: Optional[float] = None

	def observe(self, height: int) -> bool:
		"""Зафиксировать высоту; True, если блок новый."""
		if self.height is not None and height <= self.height:
			return False
		now = self._clock()
		if self.last_seen_at is not None:
			self.last_gap_s = now - self.last_seen_at
		self.height = height
		self.last_seen_at = now
		return True

	def since_last_block(self) -> Optional[float]:
		if self.last_seen_at is None:
			return None
		return self._clock() - self.last_seen_at


def check_heartbeat(tracker: BlockTracker, *, timeout_s: int = 60) -> ProbeResult:
	elapsed = tracker.since_last_block()
	if elapsed is None:
		return skipped(HEARTBEAT, "No blocks observed yet")
	if elapsed > timeout_s:
		return alerting(
			HEARTBEAT, ProbeStatus.ERROR, AlertKey.NO_NEW_BLOCKS,
			f"No new block for {int(elapsed)}s (last: {tracker.height}, threshold: {timeout_s}s)",
			seconds=int(elapsed), height=tracker.height,
		)
	return ok(HEARTBEAT, f"Last block {tracker.height} seen {int(elapsed)}s ago", seconds=int(elapsed), height=tracker.height)


def check_block_interval(tracker: BlockTracker, *, threshold_s: int = 30) -> ProbeResult:
	gap = tracker.last_gap_s
	if gap is None:
		return skipped(BLOCK_INTERVAL, "Need two observed blocks")
	if gap > threshold_s:
		return alerting(
			BLOCK_INTERVAL, ProbeStatus.ERROR, AlertKey.BLOCK_PRODUCTION_STALL,
			f"Block {tracker.height} arrived {int(gap)}s after the previous one (threshold: {threshold_s}s)",
			seconds=int(gap), height=tracker.height,
		)
	return ok(BLOCK_INTERVAL, f"Block interval {int(gap)}s", seconds=int(gap), height=tracker.height)


async def check_peers(client: Any, *, min_peers: int = 10) -> ProbeResult:
	try:
		peers = await client.get_peer_count()
	except TransportError as e:
		return failed(PEERS, f"Failed to get peer count: {e}")
	if peers < min_peers:
		return alerting(PEERS, ProbeStatus.WARNING, AlertKey.LOW_PEERS, f"Low peer count: {peers} (minimum: {min_peers})", peers=peers)
	return ok(PEERS, f"Peers: {peers}", peers=peers)


async def check_metrics(metrics_client: Any) -> Tuple[ProbeResult, Optional[Dict[str, float]]]:
	"""Доступность метрик и разобранные значения для следующих проб."""
	if metrics_client is None:
		return skipped(METRICS, "Metrics endpoint not configured"), None
	try:
		values = await metrics_client.fetch()
	except (TransportError, ParseError) as e:
		return alerting(METRICS, ProbeStatus.ERROR, AlertKey.METRICS_UNREACHABLE, f"Metrics unavailable: {e}"), None
	return ok(METRICS, f"Metrics OK ({len(values)} samples)", samples=len(values)), values


def check_memory(values: Optional[Dict[str, float]], *, max_bytes: int) -> ProbeResult:
	if values is None:
		return skipped(MEMORY, "Metrics unavailable")
	used = resident_memory_bytes(values)
	if used is None:
		return skipped(MEMORY, "Resident memory metric not exported")
	used_mb = int(used / _MB)
	if used > max_bytes:
		return alerting(
			MEMORY, ProbeStatus.WARNING, AlertKey.HIGH_MEMORY,
			f"High memory usage: {used_mb} MB (limit: {int(max_bytes / _MB)} MB)",
			used_mb=used_mb,
		)
	return ok(MEMORY, f"Memory: {used_mb} MB", used_mb=used_mb)


async def check_consensus_sync(beacon: Any) -> ProbeResult:
	if beacon is None:
		return skipped(CONSENSUS_SYNC, "Consensus endpoint not configured")
	try:
		status = await beacon.health()
	except TransportError as e:
		return alerting(CONSENSUS_SYNC, ProbeStatus.ERROR, AlertKey.CONSENSUS_UNREACHABLE, f"Consensus client unreachable: {e}")
	if status == 200:
		return ok(CONSENSUS_SYNC, "Consensus client synced", http_status=status)
	if status == 206:
		# детали синхронизации необязательны
		try:
			info = await beacon.syncing()
		except TransportError as e:
			logger.warning("consensus syncing details unavailable: %s", e)
			return ok(CONSENSUS_SYNC, "Consensus client syncing", http_status=status)
		return ok(
			CONSENSUS_SYNC, f"Consensus client syncing (head slot {info.head_slot}, distance {info.sync_distance})",
			http_status=status, head_slot=info.head_slot, sync_distance=info.sync_distance,
		)
	return alerting(CONSENSUS_SYNC, ProbeStatus.ERROR, AlertKey.CONSENSUS_NOT_SYNCED, f"Consensus client not synced (HTTP {status})", http_status=status)


def evaluate_version(name: str, key: AlertKey, current_text: Optional[str], release: Release) -> ProbeResult:
	current = parse_version(current_text)
	latest = parse_version(release.version)
	if current is None or latest is None:
		return unknown(name, f"Cannot compare versions (current: {current_text!r}, latest: {release.tag_name!r})")
	gap = compare_versions(current, latest)
	if gap is None:
		return ok(name, f"Version {format_version(current)} is up to date (latest {format_version(latest)})", current=current, latest=latest)
	message = f"Client {format_version(current)} is outdated: {gap.value} release {format_version(latest)} available"
	if release.html_url:
		message += f" ({release.html_url})"
	return alerting(
		name, ProbeStatus.WARNING, key, message,
		tier=gap_tier(gap), current=current, latest=latest, gap=gap.value, published_at=release.published_at,
	)


async def _check_version(name: str, key: AlertKey, fetch_current: Callable, releases: Any) -> ProbeResult:
	if releases is None:
		return skipped(name, "Release source not configured")
	try:
		current_text = await fetch_current()
	except TransportError as e:
		return failed(name, f"Failed to read client version: {e}")
	try:
		release = await releases.latest()
	except TransportError as e:
		# сбой GitHub не говорит ничего о самом узле
		return unknown(name, f"Latest release unavailable: {e}", current=current_text)
	return evaluate_version(name, key, current_text, release)


async def check_execution_version(client: Any, releases: Any) -> ProbeResult:
	return await _check_version(EXECUTION_VERSION, AlertKey.EXECUTION_OUTDATED, client.get_client_version, releases)


async def check_consensus_version(beacon: Any, releases: Any) -> ProbeResult:
	if beacon is None:
		return skipped(CONSENSUS_VERSION, "Consensus endpoint not configured")
	return await _check_version(CONSENSUS_VERSION, AlertKey.CONSENSUS_OUTDATED, beacon.version, releases)
