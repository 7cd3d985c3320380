from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional


class SeverityTier(str, enum.Enum):
	CRITICAL = "critical"
	CRITICAL_URGENT = "critical_urgent"
	HIGH = "high"
	MEDIUM = "medium"
	LOW = "low"
	INFO = "info"


class AlertKey(str, enum.Enum):
	WRONG_CHAIN = "wrong_chain"
	RPC_UNREACHABLE = "rpc_unreachable"
	OUT_OF_SYNC = "out_of_sync"
	AHEAD_OF_CANONICAL = "ahead_of_canonical"
	STALE_BLOCK = "stale_block"
	BLOCK_HASH_MISMATCH = "block_hash_mismatch"
	NO_NEW_BLOCKS = "no_new_blocks"
	BLOCK_PRODUCTION_STALL = "block_production_stall"
	LOW_PEERS = "low_peers"
	HIGH_MEMORY = "high_memory"
	METRICS_UNREACHABLE = "metrics_unreachable"
	CONSENSUS_NOT_SYNCED = "consensus_not_synced"
	CONSENSUS_UNREACHABLE = "consensus_unreachable"
	EXECUTION_OUTDATED = "execution_outdated"
	CONSENSUS_OUTDATED = "consensus_outdated"
	MONITOR_STARTED = "monitor_started"
	MONITOR_FATAL = "monitor_fatal"


@dataclass(frozen=True)
class TierPolicy:
	detection: str
	# None: уведомить один раз и больше не повторять до сброса
	cooldown_minutes: Optional[int]
	level: str  # info, warn, error


TIERS: Dict[SeverityTier, TierPolicy] = {
	SeverityTier.CRITICAL: TierPolicy("<1s", 10, "error"),
	SeverityTier.CRITICAL_URGENT: TierPolicy("<1s", 30, "error"),
	SeverityTier.HIGH: TierPolicy("<30s", 30, "warn"),
	SeverityTier.MEDIUM: TierPolicy("~2m", 120, "warn"),
	SeverityTier.LOW: TierPolicy("every 6h", 360, "info"),
	SeverityTier.INFO: TierPolicy("once", None, "info"),
}


_DEFAULT_TIERS: Dict[AlertKey, SeverityTier] = {
	AlertKey.WRONG_CHAIN: SeverityTier.CRITICAL,
	AlertKey.RPC_UNREACHABLE: SeverityTier.CRITICAL,
	AlertKey.OUT_OF_SYNC: SeverityTier.CRITICAL,
	AlertKey.AHEAD_OF_CANONICAL: SeverityTier.MEDIUM,
	AlertKey.STALE_BLOCK: SeverityTier.HIGH,
	AlertKey.BLOCK_HASH_MISMATCH: SeverityTier.CRITICAL_URGENT,
	AlertKey.NO_NEW_BLOCKS: SeverityTier.CRITICAL,
	AlertKey.BLOCK_PRODUCTION_STALL: SeverityTier.CRITICAL,
	AlertKey.LOW_PEERS: SeverityTier.HIGH,
	AlertKey.HIGH_MEMORY: SeverityTier.HIGH,
	AlertKey.METRICS_UNREACHABLE: SeverityTier.HIGH,
	AlertKey.CONSENSUS_NOT_SYNCED: SeverityTier.CRITICAL,
	AlertKey.CONSENSUS_UNREACHABLE: SeverityTier.CRITICAL,
	# для устаревших версий уровень выбирает сама проба (patch/minor/major)
	AlertKey.EXECUTION_OUTDATED: SeverityTier.LOW,
	AlertKey.CONSENSUS_OUTDATED: SeverityTier.LOW,
	AlertKey.MONITOR_STARTED: SeverityTier.INFO,
	AlertKey.MONITOR_FATAL: SeverityTier.CRITICAL,
}


def default_tier(key: AlertKey) -> SeverityTier:
	return _DEFAULT_TIERS[key]


def cooldown_minutes(tier: SeverityTier) -> Optional[int]:
	return TIERS[tier].cooldown_minutes


def notify_level(tier: SeverityTier) -> str:
	return TIERS[tier].level
