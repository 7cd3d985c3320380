# scripts/test_probes.py
"""
Тесты проб: синхронизация, форк, устаревший блок, heartbeat, пиры, память,
consensus-клиент и версии.
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(__file__))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fakes import FakeBeacon, FakeClock, FakeExecution, FakeMetrics, FakeReleases  # type: ignore
from nodewatch import probes  # type: ignore
from nodewatch.policy import AlertKey, SeverityTier  # type: ignore
from nodewatch.types import ProbeStatus  # type: ignore


def test_sync_lag_cases():
    behind = probes.evaluate_sync(100, 111)
    assert behind.status == ProbeStatus.WARNING
    assert behind.alert_key == AlertKey.OUT_OF_SYNC
    assert behind.data["delay"] == 11

    close = probes.evaluate_sync(105, 110)
    assert close.status == ProbeStatus.OK and close.alert_key is None

    ahead = probes.evaluate_sync(116, 110)
    assert ahead.status == ProbeStatus.WARNING
    assert ahead.alert_key == AlertKey.AHEAD_OF_CANONICAL

    # граница: ровно на допуске: ещё OK
    assert probes.evaluate_sync(100, 110).status == ProbeStatus.OK
    assert probes.evaluate_sync(115, 110).status == ProbeStatus.OK


def test_sync_lag_thresholds_are_configurable():
    assert probes.evaluate_sync(100, 104, max_delay=3).alert_key == AlertKey.OUT_OF_SYNC
    assert probes.evaluate_sync(112, 110, ahead_tolerance=1).alert_key == AlertKey.AHEAD_OF_CANONICAL


def test_sync_status_uses_max_reference():
    node = FakeExecution(100)
    refs = [FakeExecution(100), FakeExecution(111), FakeExecution(fail=True)]
    r = asyncio.run(probes.check_sync_status(node, refs, timeout_s=1.0))
    assert r.status == ProbeStatus.WARNING
    assert r.data["canonical"] == 111


def test_sync_status_without_references_is_indeterminate():
    r = asyncio.run(probes.check_sync_status(FakeExecution(100), [FakeExecution(fail=True)], timeout_s=1.0))
    assert r.status == ProbeStatus.UNKNOWN
    assert r.alert_key is None, "отсутствие референсов не алертится"


def test_sync_status_monitored_node_down():
    r = asyncio.run(probes.check_sync_status(FakeExecution(fail=True), [FakeExecution(100)], timeout_s=1.0))
    assert r.status == ProbeStatus.ERROR
    assert r.alert_key is None


def test_chain_id():
    assert asyncio.run(probes.check_chain_id(FakeExecution(chain_id=1), 1)).status == ProbeStatus.OK
    wrong = asyncio.run(probes.check_chain_id(FakeExecution(chain_id=5), 1))
    assert wrong.status == ProbeStatus.ERROR
    assert wrong.alert_key == AlertKey.WRONG_CHAIN
    assert wrong.data == {"expected": 1, "actual": 5}
    down = asyncio.run(probes.check_chain_id(FakeExecution(fail=True), 1))
    assert down.alert_key == AlertKey.RPC_UNREACHABLE
    assert down.tier == SeverityTier.CRITICAL


def test_fork_hash_mismatch():
    r = probes.evaluate_hashes(95, "0xAAA", "0xBBB")
    assert r.status == ProbeStatus.ERROR
    assert r.alert_key == AlertKey.BLOCK_HASH_MISMATCH
    assert r.tier == SeverityTier.CRITICAL_URGENT
    assert r.data["local_hash"] == "0xAAA" and r.data["reference_hash"] == "0xBBB"
    assert "0xAAA" in r.message and "0xBBB" in r.message
    assert probes.evaluate_hashes(95, "0xAAA", "0xaaa").status == ProbeStatus.OK


def test_fork_probe_checks_confirmed_depth():
    node = FakeExecution(100, hashes={95: "0xAAA"})
    refs = [FakeExecution(100, hashes={95: "0xBBB"})]
    r = asyncio.run(probes.check_block_consistency(node, refs, depth=5, timeout_s=1.0))
    assert r.status == ProbeStatus.ERROR
    assert r.data["number"] == 95

    same = asyncio.run(probes.check_block_consistency(FakeExecution(100), [FakeExecution(100)], depth=5, timeout_s=1.0))
    assert same.status == ProbeStatus.OK

    none = asyncio.run(probes.check_block_consistency(FakeExecution(100), [FakeExecution(fail=True)], timeout_s=1.0))
    assert none.status == ProbeStatus.UNKNOWN and none.alert_key is None


def test_fork_check_compares_with_first_answering_reference():
    node = FakeExecution(100, hashes={95: "0xAAA"})
    # совпадение со вторым референсом не спасает: сравнение только с первым ответившим
    refs = [FakeExecution(fail=True), FakeExecution(100, hashes={95: "0xBBB"}), FakeExecution(100, hashes={95: "0xAAA"})]
    r = asyncio.run(probes.check_block_consistency(node, refs, depth=5, timeout_s=1.0))
    assert r.status == ProbeStatus.ERROR
    assert r.data["reference_hash"] == "0xBBB"


def test_block_staleness():
    node = FakeExecution(100, block_timestamp=1_000_000)
    fresh = asyncio.run(probes.check_block_timestamp(node, threshold_s=30, now=1_000_012))
    assert fresh.status == ProbeStatus.OK
    stale = asyncio.run(probes.check_block_timestamp(node, threshold_s=30, now=1_000_031))
    assert stale.status == ProbeStatus.WARNING
    assert stale.alert_key == AlertKey.STALE_BLOCK
    assert stale.data["age_s"] == 31


def test_heartbeat_and_block_interval():
    clock = FakeClock()
    tracker = probes.BlockTracker(clock=clock)
    assert probes.check_heartbeat(tracker).status == ProbeStatus.SKIPPED
    assert probes.check_block_interval(tracker).status == ProbeStatus.SKIPPED

    assert tracker.observe(100) is True
    clock.advance(12)
    assert tracker.observe(100) is False, "та же высота: не новый блок"
    assert tracker.observe(101) is True
    assert probes.check_block_interval(tracker, threshold_s=30).status == ProbeStatus.OK

    clock.advance(61)
    hb = probes.check_heartbeat(tracker, timeout_s=60)
    assert hb.status == ProbeStatus.ERROR and hb.alert_key == AlertKey.NO_NEW_BLOCKS

    tracker.observe(102)
    stall = probes.check_block_interval(tracker, threshold_s=30)
    assert stall.status == ProbeStatus.ERROR
    assert stall.alert_key == AlertKey.BLOCK_PRODUCTION_STALL
    assert stall.data["seconds"] == 61
    assert probes.check_heartbeat(tracker, timeout_s=60).status == ProbeStatus.OK


def test_peers():
    assert asyncio.run(probes.check_peers(FakeExecution(peers=10), min_peers=10)).status == ProbeStatus.OK
    low = asyncio.run(probes.check_peers(FakeExecution(peers=3), min_peers=10))
    assert low.alert_key == AlertKey.LOW_PEERS and low.tier == SeverityTier.HIGH


def test_metrics_and_memory():
    reach, values = asyncio.run(probes.check_metrics(FakeMetrics({"process_resident_memory_bytes": 17 * 1024 ** 3})))
    assert reach.status == ProbeStatus.OK
    mem = probes.check_memory(values, max_bytes=16 * 1024 ** 3)
    assert mem.alert_key == AlertKey.HIGH_MEMORY
    assert mem.data["used_mb"] == 17 * 1024

    reach, values = asyncio.run(probes.check_metrics(FakeMetrics(fail=True)))
    assert reach.alert_key == AlertKey.METRICS_UNREACHABLE
    assert probes.check_memory(values, max_bytes=1).status == ProbeStatus.SKIPPED

    reach, values = asyncio.run(probes.check_metrics(None))
    assert reach.status == ProbeStatus.SKIPPED
    assert probes.check_memory({"other": 1.0}, max_bytes=1).status == ProbeStatus.SKIPPED


def test_consensus_sync():
    assert asyncio.run(probes.check_consensus_sync(FakeBeacon(200))).status == ProbeStatus.OK
    syncing = asyncio.run(probes.check_consensus_sync(FakeBeacon(206)))
    assert syncing.status == ProbeStatus.OK and syncing.data["sync_distance"] == 42
    bad = asyncio.run(probes.check_consensus_sync(FakeBeacon(503)))
    assert bad.alert_key == AlertKey.CONSENSUS_NOT_SYNCED
    down = asyncio.run(probes.check_consensus_sync(FakeBeacon(fail=True)))
    assert down.alert_key == AlertKey.CONSENSUS_UNREACHABLE
    assert asyncio.run(probes.check_consensus_sync(None)).status == ProbeStatus.SKIPPED


def test_version_probes():
    node = FakeExecution(version="reth/v1.2.3-abcdef/x86_64-unknown-linux-gnu")
    minor = asyncio.run(probes.check_execution_version(node, FakeReleases("v1.3.0")))
    assert minor.alert_key == AlertKey.EXECUTION_OUTDATED
    assert minor.tier == SeverityTier.HIGH
    patch = asyncio.run(probes.check_execution_version(node, FakeReleases("v1.2.4")))
    assert patch.tier == SeverityTier.LOW
    major = asyncio.run(probes.check_execution_version(node, FakeReleases("v2.0.0")))
    assert major.tier == SeverityTier.CRITICAL_URGENT
    assert asyncio.run(probes.check_execution_version(node, FakeReleases("v1.2.3"))).status == ProbeStatus.OK

    newer = asyncio.run(probes.check_consensus_version(FakeBeacon(version="Lighthouse/v6.0.0-aaaa/x86_64-linux"), FakeReleases("v5.9.9")))
    assert newer.status == ProbeStatus.OK


def test_version_probe_indeterminate_cases():
    garbage = asyncio.run(probes.check_execution_version(FakeExecution(version="custom-build"), FakeReleases("v1.3.0")))
    assert garbage.status == ProbeStatus.UNKNOWN and garbage.alert_key is None
    bad_tag = asyncio.run(probes.check_execution_version(FakeExecution(), FakeReleases("nightly")))
    assert bad_tag.status == ProbeStatus.UNKNOWN
    github_down = asyncio.run(probes.check_execution_version(FakeExecution(), FakeReleases(fail=True)))
    assert github_down.status == ProbeStatus.UNKNOWN
    node_down = asyncio.run(probes.check_execution_version(FakeExecution(fail=True), FakeReleases()))
    assert node_down.status == ProbeStatus.ERROR and node_down.alert_key is None


if __name__ == "__main__":
    for name, fn in sorted(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"✅ {name}")
