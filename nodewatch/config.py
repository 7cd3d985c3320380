from __future__ import annotations

import os
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

DEFAULT_REFERENCE_RPCS = [
	"https://ethereum.publicnode.com",
	"https://eth.llamarpc.com",
	"https://rpc.ankr.com/eth",
]

_GB = 1024 ** 3


def _check_http_url(v: str) -> str:
	parsed = urlparse(v)
	if parsed.scheme not in ("http", "https") or not parsed.netloc:
		raise ValueError(f"url must start with http or https: {v!r}")
	return v


class Settings(BaseModel):
	monitored_rpc: str = "http://localhost:8545"
	monitored_ws: Optional[str] = None
	expected_chain_id: int = Field(default=1, ge=1)
	reference_rpcs: List[str] = Field(default_factory=lambda: list(DEFAULT_REFERENCE_RPCS), min_length=1)
	metrics_url: Optional[str] = None
	consensus_url: Optional[str] = None
	execution_releases_url: Optional[str] = "https://api.github.com/repos/paradigmxyz/reth/releases/latest"
	consensus_releases_url: Optional[str] = "https://api.github.com/repos/sigp/lighthouse/releases/latest"

	poll_interval_s: int = Field(default=12, ge=1)
	rpc_timeout_s: float = Field(default=10.0, gt=0)

	max_block_delay: int = Field(default=10, ge=0)
	ahead_tolerance: int = Field(default=5, ge=0)
	fork_check_depth: int = Field(default=5, ge=0)
	block_age_threshold_s: int = Field(default=30, ge=1)
	heartbeat_timeout_s: int = Field(default=60, ge=1)
	block_interval_threshold_s: int = Field(default=30, ge=1)
	min_peers: int = Field(default=10, ge=0)
	max_memory_bytes: int = Field(default=16 * _GB, ge=1)

	# периоды таймеров push-режима
	heartbeat_check_s: int = Field(default=10, ge=1)
	metrics_check_s: int = Field(default=30, ge=1)
	consensus_check_s: int = Field(default=30, ge=1)
	version_check_s: int = Field(default=6 * 3600, ge=60)

	reconnect_max_retries: int = Field(default=10, ge=1)
	reconnect_base_s: float = Field(default=1.0, gt=0)
	reconnect_ceiling_s: float = Field(default=60.0, gt=0)

	notify_enabled: bool = True
	telegram_bot_token: Optional[str] = None
	telegram_chat_id: Optional[str] = None
	webhook_url: Optional[str] = None

	@field_validator("monitored_rpc")
	@classmethod
	def validate_rpc(cls, v: str) -> str:
		return _check_http_url(v)

	@field_validator("metrics_url", "consensus_url", "execution_releases_url", "consensus_releases_url", "webhook_url")
	@classmethod
	def validate_optional_url(cls, v: Optional[str]) -> Optional[str]:
		if not v:
			return None
		return _check_http_url(v)

	@field_validator("monitored_ws")
	@classmethod
	def validate_ws(cls, v: Optional[str]) -> Optional[str]:
		if not v:
			return None
		if urlparse(v).scheme not in ("ws", "wss"):
			raise ValueError(f"websocket url must start with ws or wss: {v!r}")
		return v

	@field_validator("reference_rpcs")
	@classmethod
	def validate_references(cls, v: List[str]) -> List[str]:
		return [_check_http_url(u) for u in v]


# переменная окружения -> поле Settings
_ENV = {
	"MONITORED_RPC": "monitored_rpc",
	"MONITORED_WS": "monitored_ws",
	"EXPECTED_CHAIN_ID": "expected_chain_id",
	"METRICS_URL": "metrics_url",
	"CONSENSUS_URL": "consensus_url",
	"EXECUTION_RELEASES_URL": "execution_releases_url",
	"CONSENSUS_RELEASES_URL": "consensus_releases_url",
	"POLL_INTERVAL_S": "poll_interval_s",
	"RPC_TIMEOUT_S": "rpc_timeout_s",
	"MAX_BLOCK_DELAY": "max_block_delay",
	"AHEAD_TOLERANCE": "ahead_tolerance",
	"FORK_CHECK_DEPTH": "fork_check_depth",
	"BLOCK_AGE_THRESHOLD_S": "block_age_threshold_s",
	"HEARTBEAT_TIMEOUT_S": "heartbeat_timeout_s",
	"BLOCK_INTERVAL_THRESHOLD_S": "block_interval_threshold_s",
	"MIN_PEERS": "min_peers",
	"HEARTBEAT_CHECK_S": "heartbeat_check_s",
	"METRICS_CHECK_S": "metrics_check_s",
	"CONSENSUS_CHECK_S": "consensus_check_s",
	"VERSION_CHECK_S": "version_check_s",
	"RECONNECT_MAX_RETRIES": "reconnect_max_retries",
	"TELEGRAM_BOT_TOKEN": "telegram_bot_token",
	"TELEGRAM_CHAT_ID": "telegram_chat_id",
	"WEBHOOK_URL": "webhook_url",
}


def from_env(environ: Optional[dict] = None) -> Settings:
	"""Собрать Settings из переменных окружения; пустые значения означают «по умолчанию»."""
	env = os.environ if environ is None else environ
	values: dict = {}
	for var, fld in _ENV.items():
		raw = env.get(var)
		if raw is not None and raw.strip() != "":
			values[fld] = raw.strip()
	refs = env.get("REFERENCE_RPCS")
	if refs and refs.strip():
		values["reference_rpcs"] = [u.strip() for u in refs.split(",") if u.strip()]
	mem = env.get("MAX_MEMORY_GB")
	if mem and mem.strip():
		values["max_memory_bytes"] = int(float(mem) * _GB)
	enabled = env.get("NOTIFY_ENABLED")
	if enabled is not None and enabled.strip():
		values["notify_enabled"] = enabled.strip().lower() in ("1", "true", "yes")
	return Settings(**values)
