# scripts/test_api.py
"""
HTTP-эндпоинты сервиса: /health, /metrics, /ready, /status.
TestClient без контекстного менеджера: startup (и реальный монитор) не запускается.
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(__file__))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient

from fakes import FakeExecution, FakeNotifier, make_settings  # type: ignore
from nodewatch import main as service  # type: ignore
from nodewatch.monitor import Monitor  # type: ignore


def _fake_monitor():
    node = FakeExecution(100, peers=2)
    monitor = Monitor(make_settings(), execution=node, references=[FakeExecution(100)], notifier=FakeNotifier())

    async def run():
        async with monitor:
            await monitor.run_once()

    asyncio.run(run())
    return monitor


def test_health_and_metrics():
    client = TestClient(service.app)
    r = client.get('/health')
    assert r.status_code == 200 and r.json().get('status') == 'ok'
    r = client.get('/metrics')
    assert r.status_code == 200
    assert 'nodewatch_probe_results_total' in r.text


def test_status_and_ready_without_monitor():
    client = TestClient(service.app)
    saved = service._monitor
    service._monitor = None
    try:
        r = client.get('/status')
        assert r.status_code == 503
        assert r.json() == {'code': '503', 'message': 'monitor not running'}
        assert client.get('/ready').status_code == 503
    finally:
        service._monitor = saved


def test_status_reports_latest_results():
    client = TestClient(service.app)
    saved = service._monitor
    service._monitor = _fake_monitor()
    try:
        r = client.get('/status')
        assert r.status_code == 200, r.text
        body = r.json()
        assert body['status'] == 'WARNING'
        assert 'low_peers' in body['active_alerts']
        probes = {p['name']: p for p in body['probes']}
        assert probes['peers']['alert_key'] == 'low_peers'
        assert probes['peers']['tier'] == 'high'
        assert probes['chain_id']['status'] == 'OK'
    finally:
        service._monitor = saved


if __name__ == "__main__":
    for name, fn in sorted(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"✅ {name}")
