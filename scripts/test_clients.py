# scripts/test_clients.py
"""
Клиенты узлов против локального aiohttp-сервера: JSON-RPC, newHeads по
WebSocket, Beacon API, метрики и GitHub releases.
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(__file__))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from aiohttp import web
from aiohttp import test_utils

from fakes import FakeExecution, FakeNotifier, make_settings  # type: ignore
from nodewatch.beacon import BeaconClient  # type: ignore
from nodewatch.errors import FatalMonitorError, TransportError  # type: ignore
from nodewatch.monitor import ConnectionState, Monitor  # type: ignore
from nodewatch.node_metrics import MetricsClient  # type: ignore
from nodewatch.rpc import ExecutionClient  # type: ignore
from nodewatch.versions import ReleaseClient  # type: ignore

RESULTS = {
    "eth_blockNumber": "0x1312d00",
    "eth_chainId": "0x1",
    "net_peerCount": "0x19",
    "web3_clientVersion": "reth/v1.2.3-abcdef0/x86_64-unknown-linux-gnu",
}


async def rpc_handler(request):
    body = await request.json()
    method = body["method"]
    if method == "eth_getBlockByNumber":
        tag = body["params"][0]
        number = 20000000 if tag == "latest" else int(tag, 16)
        result = {"number": hex(number), "hash": f"0x{number:064x}", "timestamp": "0x65000000"}
    elif method in RESULTS:
        result = RESULTS[method]
    else:
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "method not found"}})
    return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": result})


async def broken_handler(request):
    return web.Response(status=502, text="bad gateway")


async def slow_handler(request):
    await asyncio.sleep(2)
    return web.json_response({"jsonrpc": "2.0", "id": 1, "result": "0x1"})


async def ws_handler(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    msg = await ws.receive_json()
    assert msg["method"] == "eth_subscribe" and msg["params"] == ["newHeads"]
    await ws.send_json({"jsonrpc": "2.0", "id": msg["id"], "result": "0xfeed"})
    await ws.send_str("not json")
    for n in (0x20, 0x21):
        await ws.send_json({"jsonrpc": "2.0", "method": "eth_subscription", "params": {"subscription": "0xfeed", "result": {"number": hex(n)}}})
    await ws.close()
    return ws


async def ws_drop_handler(request):
    # закрывает сокет, не подтвердив подписку
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    await ws.receive_json()
    await ws.close()
    return ws


async def ws_bad_ack_handler(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    await ws.receive_json()
    await ws.send_str(request.query.get("ack", "not json"))
    await ws.close()
    return ws


async def ws_bad_head_handler(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    msg = await ws.receive_json()
    await ws.send_json({"jsonrpc": "2.0", "id": msg["id"], "result": "0xfeed"})
    await ws.send_json({"jsonrpc": "2.0", "method": "eth_subscription", "params": {"subscription": "0xfeed", "result": "0x20"}})
    await ws.send_json({"jsonrpc": "2.0", "method": "eth_subscription", "params": {"subscription": "0xfeed", "result": {"number": "0x21"}}})
    await ws.close()
    return ws


async def health_handler(request):
    return web.Response(status=206)


async def syncing_handler(request):
    return web.json_response({"data": {"head_slot": "9000000", "sync_distance": "42", "is_syncing": True}})


async def version_handler(request):
    return web.json_response({"data": {"version": "Lighthouse/v5.1.0-1a2b3c4/x86_64-linux"}})


async def metrics_handler(request):
    return web.Response(text='# TYPE process_resident_memory_bytes gauge\nprocess_resident_memory_bytes 1.5e9\nreth_network_connected_peers{id="x"} 7\n')


async def release_handler(request):
    return web.json_response({"tag_name": "v1.3.0", "published_at": "2026-09-01T00:00:00Z", "html_url": "https://github.com/x/y/releases/v1.3.0"})


def make_app():
    app = web.Application()
    app.router.add_post("/rpc", rpc_handler)
    app.router.add_post("/broken", broken_handler)
    app.router.add_post("/slow", slow_handler)
    app.router.add_get("/ws", ws_handler)
    app.router.add_get("/ws-drop", ws_drop_handler)
    app.router.add_get("/ws-bad-ack", ws_bad_ack_handler)
    app.router.add_get("/ws-bad-head", ws_bad_head_handler)
    app.router.add_get("/eth/v1/node/health", health_handler)
    app.router.add_get("/eth/v1/node/syncing", syncing_handler)
    app.router.add_get("/eth/v1/node/version", version_handler)
    app.router.add_get("/metrics", metrics_handler)
    app.router.add_get("/releases/latest", release_handler)
    return app


def _serve(scenario):
    async def run():
        async with test_utils.TestServer(make_app()) as server:
            await scenario(server)

    asyncio.run(run())


def test_execution_rpc_calls():
    async def scenario(server):
        async with ExecutionClient(str(server.make_url("/rpc"))) as client:
            assert await client.get_height() == 20000000
            assert await client.get_network_id() == 1
            assert await client.get_peer_count() == 25
            assert (await client.get_client_version()).startswith("reth/v1.2.3")
            block = await client.get_block(19999995)
            assert block.number == 19999995
            assert block.hash == f"0x{19999995:064x}"
            assert block.timestamp == 0x65000000
            try:
                await client.raw_call("debug_traceBlock")
            except TransportError as e:
                assert "method not found" in str(e)
            else:
                raise AssertionError("ожидали TransportError")

    _serve(scenario)


def test_execution_transport_failures():
    async def scenario(server):
        async with ExecutionClient(str(server.make_url("/broken"))) as client:
            try:
                await client.get_height()
            except TransportError as e:
                assert "HTTP 502" in str(e)
            else:
                raise AssertionError("ожидали TransportError")
        async with ExecutionClient(str(server.make_url("/slow")), timeout_s=0.2) as client:
            try:
                await client.get_height()
            except TransportError as e:
                assert "timeout" in str(e)
            else:
                raise AssertionError("ожидали таймаут")

    _serve(scenario)


def test_new_heads_subscription():
    async def scenario(server):
        ws_url = str(server.make_url("/ws")).replace("http://", "ws://")
        heights = []
        async with ExecutionClient(str(server.make_url("/rpc")), ws_url=ws_url) as client:
            try:
                async for h in client.subscribe_new_blocks():
                    heights.append(h)
            except TransportError:
                pass
            else:
                raise AssertionError("подписка всегда завершается TransportError")
        assert heights == [0x20, 0x21]

    _serve(scenario)


def _ws(server, path):
    return str(server.make_url(path)).replace("http://", "ws://")


async def _collect(client):
    heights = []
    try:
        async for h in client.subscribe_new_blocks():
            heights.append(h)
    except TransportError as e:
        return heights, e
    raise AssertionError("подписка всегда завершается TransportError")


def test_subscription_closed_before_confirmation():
    async def scenario(server):
        for path in ("/ws-drop", "/ws-bad-ack", "/ws-bad-ack?ack=[1]", "/ws-bad-ack?ack={}"):
            async with ExecutionClient(str(server.make_url("/rpc")), ws_url=_ws(server, path)) as client:
                heights, err = await _collect(client)
            assert heights == [], path
            assert "eth_subscribe" in str(err), f"{path}: {err}"

    _serve(scenario)


def test_subscription_skips_malformed_heads():
    async def scenario(server):
        async with ExecutionClient(str(server.make_url("/rpc")), ws_url=_ws(server, "/ws-bad-head")) as client:
            heights, _ = await _collect(client)
        assert heights == [0x21]

    _serve(scenario)


def test_push_mode_reconnects_after_dropped_subscription():
    notifier = FakeNotifier()

    async def scenario(server):
        ws_url = _ws(server, "/ws-drop")
        monitor = Monitor(
            make_settings(monitored_ws=ws_url, reconnect_max_retries=2, reconnect_base_s=0.01, reconnect_ceiling_s=0.01),
            execution=ExecutionClient(str(server.make_url("/rpc")), ws_url=ws_url),
            references=[FakeExecution(20000000)],
            notifier=notifier,
        )
        try:
            async with monitor:
                await monitor.run_push()
        except FatalMonitorError:
            pass
        else:
            raise AssertionError("ожидали FatalMonitorError")
        assert monitor.reconnector.attempt == 3
        assert monitor.reconnector.state == ConnectionState.FAILED

    _serve(scenario)
    assert notifier.keys()[0] == "monitor_started"
    assert notifier.keys()[-1] == "monitor_fatal"


def test_beacon_metrics_and_releases():
    async def scenario(server):
        base = str(server.make_url("/")).rstrip("/")
        async with BeaconClient(base) as beacon:
            assert await beacon.health() == 206
            info = await beacon.syncing()
            assert info.sync_distance == 42 and info.head_slot == 9000000
            assert (await beacon.version()).startswith("Lighthouse/v5.1.0")
        async with MetricsClient(base + "/metrics") as metrics:
            values = await metrics.fetch()
            assert values["process_resident_memory_bytes"] == 1.5e9
            assert values["reth_network_connected_peers"] == 7.0
        async with ReleaseClient(base + "/releases/latest") as releases:
            release = await releases.latest()
            assert release.tag_name == "v1.3.0" and release.version == "1.3.0"

    _serve(scenario)


if __name__ == "__main__":
    for name, fn in sorted(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"✅ {name}")
