from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import timezone
from typing import List, Optional

from pydantic import ValidationError

from nodewatch.config import Settings, from_env
from nodewatch.errors import FatalMonitorError
from nodewatch.logging_config import setup_logging
from nodewatch.monitor import CycleReport, from_settings
from nodewatch.types import ProbeStatus

logger = logging.getLogger(__name__)

_ICONS = {
	ProbeStatus.OK: "✓",
	ProbeStatus.WARNING: "⚠",
	ProbeStatus.ERROR: "✗",
	ProbeStatus.SKIPPED: "-",
	ProbeStatus.UNKNOWN: "?",
}


def format_report(report: CycleReport, rpc_url: str) -> str:
	lines = [
		"=" * 60,
		"NODEWATCH - Health Check",
		f"Timestamp: {report.started_at.astimezone(timezone.utc).isoformat()}",
		f"Monitored RPC: {rpc_url}",
		"=" * 60,
	]
	for r in report.results:
		lines.append(f"{_ICONS[r.status]} {r.name}: {r.message}")
	lines.append("=" * 60)
	if report.status == ProbeStatus.ERROR:
		lines.append("STATUS: CRITICAL - Errors detected")
	elif report.status == ProbeStatus.WARNING:
		lines.append("STATUS: WARNING - Some checks raised warnings")
	else:
		lines.append("STATUS: HEALTHY - All checks passed")
	return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(prog="nodewatch", description="Ethereum node health monitor")
	p.add_argument("--once", action="store_true", help="run all checks once; exit 1 if errors were detected")
	p.add_argument("--mode", choices=("poll", "push"), default="poll", help="continuous mode (default: poll)")
	p.add_argument("--interval", type=int, default=None, help="poll interval, seconds (overrides POLL_INTERVAL_S)")
	p.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
	return p


async def _run_once(settings: Settings) -> int:
	async with from_settings(settings) as monitor:
		report = await monitor.run_once()
	print(format_report(report, settings.monitored_rpc))
	return report.exit_code


async def _run_forever(settings: Settings, mode: str) -> int:
	monitor = from_settings(settings)
	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		try:
			loop.add_signal_handler(sig, monitor.stop)
		except (NotImplementedError, RuntimeError):
			# Windows: остаётся KeyboardInterrupt
			pass
	async with monitor:
		try:
			if mode == "push":
				await monitor.run_push()
			else:
				await monitor.run_poll()
		except FatalMonitorError as e:
			logger.critical("fatal: %s", e)
			return 1
	return 0


def main(argv: Optional[List[str]] = None) -> int:
	args = build_parser().parse_args(argv)
	setup_logging(args.log_level)
	try:
		settings = from_env()
		if args.interval is not None:
			settings = settings.model_copy(update={"poll_interval_s": max(1, args.interval)})
	except (ValidationError, ValueError) as e:
		logger.error("invalid configuration: %s", e)
		return 2
	if args.mode == "push" and not args.once and not settings.monitored_ws:
		logger.error("push mode requires MONITORED_WS")
		return 2
	if args.once:
		return asyncio.run(_run_once(settings))
	try:
		return asyncio.run(_run_forever(settings, args.mode))
	except KeyboardInterrupt:
		return 0


if __name__ == "__main__":
	sys.exit(main())
