from __future__ import annotations

import asyncio
import contextlib
import enum
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from nodewatch import metrics
from nodewatch import probes
from nodewatch.alerts import AlertDispatcher
from nodewatch.beacon import BeaconClient
from nodewatch.config import Settings, from_env as settings_from_env
from nodewatch.errors import FatalMonitorError, TransportError
from nodewatch.gate import AlertGate
from nodewatch.node_metrics import MetricsClient
from nodewatch.notifier import Notifier, build_notifier
from nodewatch.policy import AlertKey, SeverityTier
from nodewatch.rpc import ExecutionClient
from nodewatch.types import ProbeResult, ProbeStatus, failed, worst_status
from nodewatch.versions import ReleaseClient

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
	CONNECTED = "connected"
	RECONNECTING = "reconnecting"
	FAILED = "failed"


class Reconnector:
	"""Состояние push-подписки и экспоненциальная задержка переподключения."""

	def __init__(self, *, max_retries: int = 10, base_s: float = 1.0, factor: float = 2.0, ceiling_s: float = 60.0) -> None:
		if max_retries < 1:
			raise ValueError("max_retries должен быть >= 1")
		self.max_retries = max_retries
		self.base_s = base_s
		self.factor = factor
		self.ceiling_s = ceiling_s
		self.state = ConnectionState.RECONNECTING
		self.attempt = 0

	def delay(self, attempt: int) -> float:
		return min(self.base_s * (self.factor ** (attempt - 1)), self.ceiling_s)

	def connected(self) -> None:
		self.state = ConnectionState.CONNECTED
		self.attempt = 0

	def failed(self) -> Optional[float]:
		"""Зафиксировать обрыв; вернуть задержку до следующей попытки или None, если лимит исчерпан."""
		self.attempt += 1
		if self.attempt > self.max_retries:
			self.state = ConnectionState.FAILED
			return None
		self.state = ConnectionState.RECONNECTING
		return self.delay(self.attempt)


@dataclass
class CycleReport:
	results: List[ProbeResult]
	started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

	@property
	def status(self) -> ProbeStatus:
		return worst_status(self.results)

	@property
	def exit_code(self) -> int:
		return 1 if self.status == ProbeStatus.ERROR else 0


class Monitor:
	def __init__(
		self,
		settings: Settings,
		*,
		execution: Any,
		references: Sequence[Any],
		beacon: Any = None,
		metrics_client: Any = None,
		execution_releases: Any = None,
		consensus_releases: Any = None,
		notifier: Optional[Notifier] = None,
		gate: Optional[AlertGate] = None,
		tracker: Optional[probes.BlockTracker] = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.settings = settings
		self.execution = execution
		self.references = list(references)
		self.beacon = beacon
		self.metrics_client = metrics_client
		self.execution_releases = execution_releases
		self.consensus_releases = consensus_releases
		if notifier is None:
			notifier = build_notifier(
				enabled=settings.notify_enabled,
				telegram_bot_token=settings.telegram_bot_token,
				telegram_chat_id=settings.telegram_chat_id,
				webhook_url=settings.webhook_url,
			)
		self.dispatcher = AlertDispatcher(gate or AlertGate(), notifier)
		self.tracker = tracker or probes.BlockTracker()
		self.reconnector = Reconnector(
			max_retries=settings.reconnect_max_retries,
			base_s=settings.reconnect_base_s,
			ceiling_s=settings.reconnect_ceiling_s,
		)
		self._lock = asyncio.Lock()
		self._stop_event = asyncio.Event()
		self._stack: Optional[contextlib.AsyncExitStack] = None
		self._latest: Dict[str, ProbeResult] = {}
		self._clock = clock
		# имя батареи -> время последнего запуска в poll-режиме
		self._ran_at: Dict[str, float] = {}
		self._block_pending = asyncio.Event()
		self.last_report: Optional[CycleReport] = None

	async def __aenter__(self) -> "Monitor":
		self._stack = contextlib.AsyncExitStack()
		seen: set[int] = set()
		for c in (self.execution, *self.references, self.beacon, self.metrics_client, self.execution_releases, self.consensus_releases):
			if c is None or id(c) in seen:
				continue
			seen.add(id(c))
			await self._stack.enter_async_context(c)
		return self

	async def __aexit__(self, *exc: Any) -> None:
		if self._stack is not None:
			await self._stack.aclose()
			self._stack = None

	def stop(self) -> None:
		self._stop_event.set()

	@property
	def stopped(self) -> bool:
		return self._stop_event.is_set()

	async def _wait(self, seconds: float) -> bool:
		"""Пауза, прерываемая stop(); True: остановка запрошена."""
		try:
			await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
		except asyncio.TimeoutError:
			pass
		return self._stop_event.is_set()

	def latest_results(self) -> List[ProbeResult]:
		return list(self._latest.values())

	# --- пробы -----------------------------------------------------------

	async def _run_probe(self, name: str, call: Union[ProbeResult, Awaitable[ProbeResult]]) -> ProbeResult:
		try:
			result = await call if inspect.isawaitable(call) else call
		except Exception as e:
			# неожиданный сбой одной пробы не останавливает остальные
			logger.exception("probe %s crashed", name)
			result = failed(name, f"Probe crashed: {e}")
		metrics.record_probe(result.name, result.status.value)
		self._latest[result.name] = result
		level = logging.INFO if result.status in (ProbeStatus.OK, ProbeStatus.SKIPPED) else logging.WARNING
		logger.log(level, "%s %s: %s", result.status.value, result.name, result.message)
		await self.dispatcher.process(result, probes.PROBE_KEYS.get(result.name, ()))
		return result

	async def block_battery(self) -> List[ProbeResult]:
		s = self.settings
		out = [
			await self._run_probe(probes.CHAIN_ID, probes.check_chain_id(self.execution, s.expected_chain_id)),
			await self._run_probe(probes.SYNC_STATUS, probes.check_sync_status(
				self.execution, self.references,
				max_delay=s.max_block_delay, ahead_tolerance=s.ahead_tolerance, timeout_s=s.rpc_timeout_s,
			)),
			await self._run_probe(probes.BLOCK_TIMESTAMP, probes.check_block_timestamp(self.execution, threshold_s=s.block_age_threshold_s)),
			await self._run_probe(probes.BLOCK_CONSISTENCY, probes.check_block_consistency(
				self.execution, self.references, depth=s.fork_check_depth, timeout_s=s.rpc_timeout_s,
			)),
			await self._run_probe(probes.BLOCK_INTERVAL, probes.check_block_interval(self.tracker, threshold_s=s.block_interval_threshold_s)),
		]
		for r in out:
			if r.name == probes.SYNC_STATUS:
				metrics.set_height("monitored", r.data.get("local"))
				metrics.set_height("canonical", r.data.get("canonical"))
		return out

	async def heartbeat_battery(self) -> List[ProbeResult]:
		return [await self._run_probe(probes.HEARTBEAT, probes.check_heartbeat(self.tracker, timeout_s=self.settings.heartbeat_timeout_s))]

	async def metrics_battery(self) -> List[ProbeResult]:
		peers = await self._run_probe(probes.PEERS, probes.check_peers(self.execution, min_peers=self.settings.min_peers))
		try:
			reach, values = await probes.check_metrics(self.metrics_client)
		except Exception as e:
			logger.exception("probe %s crashed", probes.METRICS)
			reach, values = failed(probes.METRICS, f"Probe crashed: {e}"), None
		reach = await self._run_probe(probes.METRICS, reach)
		memory = await self._run_probe(probes.MEMORY, probes.check_memory(values, max_bytes=self.settings.max_memory_bytes))
		return [peers, reach, memory]

	async def consensus_battery(self) -> List[ProbeResult]:
		return [await self._run_probe(probes.CONSENSUS_SYNC, probes.check_consensus_sync(self.beacon))]

	async def version_battery(self) -> List[ProbeResult]:
		return [
			await self._run_probe(probes.EXECUTION_VERSION, probes.check_execution_version(self.execution, self.execution_releases)),
			await self._run_probe(probes.CONSENSUS_VERSION, probes.check_consensus_version(self.beacon, self.consensus_releases)),
		]

	async def _observe_tip(self) -> None:
		try:
			self.tracker.observe(await self.execution.get_height())
		except TransportError as e:
			logger.warning("cannot read monitored height: %s", e)

	# --- режимы ----------------------------------------------------------

	def _due(self, name: str, period: float) -> bool:
		now = self._clock()
		last = self._ran_at.get(name)
		if last is not None and now - last < period:
			return False
		self._ran_at[name] = now
		return True

	async def run_once(self, *, throttled: bool = False) -> CycleReport:
		"""Полный набор проб за один проход.

		С throttled=True (poll-режим) метрики, consensus и версии запускаются
		не чаще своих периодов METRICS_CHECK_S, CONSENSUS_CHECK_S и VERSION_CHECK_S.
		"""
		s = self.settings
		async with self._lock:
			report = CycleReport(results=[])
			await self._observe_tip()
			batteries = [self.block_battery, self.heartbeat_battery]
			for battery, period in (
				(self.metrics_battery, s.metrics_check_s),
				(self.consensus_battery, s.consensus_check_s),
				(self.version_battery, s.version_check_s),
			):
				if not throttled or self._due(battery.__name__, period):
					batteries.append(battery)
			for battery in batteries:
				report.results.extend(await battery())
		self.last_report = report
		logger.info("cycle finished: %s (%s probes)", report.status.value, len(report.results))
		return report

	def on_new_block(self, height: int) -> bool:
		"""Зафиксировать приход блока сразу, не дожидаясь блокировки; проверки запускает _block_worker."""
		if not self.tracker.observe(height):
			return False
		logger.debug("new block %s", height)
		self._block_pending.set()
		return True

	async def _block_worker(self) -> None:
		# блоки, пришедшие во время прогона, сливаются в один следующий прогон
		while not self._stop_event.is_set():
			await self._block_pending.wait()
			self._block_pending.clear()
			try:
				async with self._lock:
					await self.block_battery()
			except Exception as e:
				logger.exception("block battery failed: %s", e)

	async def _announce(self, mode: str) -> None:
		await self.dispatcher.fire(
			AlertKey.MONITOR_STARTED, SeverityTier.INFO,
			title="Monitor started",
			message=f"Watching {self.execution.url} ({mode} mode, {len(self.references)} references)",
		)

	async def run_poll(self) -> None:
		interval = self.settings.poll_interval_s
		logger.info("Monitor started in poll mode: interval=%ss", interval)
		await self._announce("poll")
		while not self._stop_event.is_set():
			try:
				await self.run_once(throttled=True)
			except Exception as e:
				logger.exception("monitor cycle failed: %s", e)
			if await self._wait(interval):
				break

	async def _every(self, period: float, battery: Callable[[], Awaitable[List[ProbeResult]]]) -> None:
		while not self._stop_event.is_set():
			try:
				async with self._lock:
					await battery()
			except Exception as e:
				logger.exception("timer %s failed: %s", getattr(battery, "__name__", battery), e)
			if await self._wait(period):
				break

	async def run_push(self) -> None:
		s = self.settings
		logger.info("Monitor started in push mode: ws=%s", getattr(self.execution, "ws_url", None))
		await self._announce("push")
		tasks = [
			asyncio.create_task(self._block_worker()),
			asyncio.create_task(self._every(s.heartbeat_check_s, self.heartbeat_battery)),
			asyncio.create_task(self._every(s.metrics_check_s, self.metrics_battery)),
			asyncio.create_task(self._every(s.consensus_check_s, self.consensus_battery)),
			asyncio.create_task(self._every(s.version_check_s, self.version_battery)),
		]
		try:
			await self._subscription_loop()
		finally:
			for t in tasks:
				t.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)

	async def _subscription_loop(self) -> None:
		while not self._stop_event.is_set():
			try:
				async for height in self.execution.subscribe_new_blocks():
					if self.reconnector.state != ConnectionState.CONNECTED:
						logger.info("newHeads subscription active")
						self.reconnector.connected()
						metrics.set_reconnect_attempt(0)
					self.on_new_block(height)
					if self._stop_event.is_set():
						return
				logger.warning("newHeads subscription ended")
			except TransportError as e:
				logger.warning("newHeads subscription lost: %s", e)
			delay = self.reconnector.failed()
			metrics.set_reconnect_attempt(self.reconnector.attempt)
			if delay is None:
				message = f"Subscription to {self.execution.ws_url} failed {self.reconnector.max_retries} reconnect attempts; monitor exits"
				logger.error(message)
				await self.dispatcher.notify(AlertKey.MONITOR_FATAL, SeverityTier.CRITICAL, title="Monitor stopped", message=message)
				raise FatalMonitorError(message)
			logger.info("reconnecting in %.0fs (attempt %s/%s)", delay, self.reconnector.attempt, self.reconnector.max_retries)
			if await self._wait(delay):
				return


def from_settings(settings: Settings) -> Monitor:
	"""Монитор с реальными клиентами; использовать внутри `async with`."""
	timeout = settings.rpc_timeout_s
	read_timeout = max(timeout - 3.0, 1.0)
	return Monitor(
		settings,
		execution=ExecutionClient(settings.monitored_rpc, timeout_s=timeout, ws_url=settings.monitored_ws),
		references=[ExecutionClient(u, timeout_s=timeout) for u in settings.reference_rpcs],
		beacon=BeaconClient(settings.consensus_url, read_timeout_s=read_timeout) if settings.consensus_url else None,
		metrics_client=MetricsClient(settings.metrics_url, read_timeout_s=read_timeout) if settings.metrics_url else None,
		execution_releases=ReleaseClient(settings.execution_releases_url, read_timeout_s=read_timeout) if settings.execution_releases_url else None,
		consensus_releases=ReleaseClient(settings.consensus_releases_url, read_timeout_s=read_timeout) if settings.consensus_releases_url and settings.consensus_url else None,
	)


def from_env() -> Monitor:
	return from_settings(settings_from_env())
