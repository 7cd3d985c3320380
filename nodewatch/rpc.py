import asyncio
import aiohttp
import itertools
import json
import logging

from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Type, Union
from types import TracebackType

from nodewatch.errors import TransportError

logger = logging.getLogger(__name__)

BlockTag = Union[int, str]


@dataclass(frozen=True)
class BlockInfo:
    number: int
    hash: str
    timestamp: int


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise TransportError(f"Unexpected quantity: {value!r}")
    try:
        return int(value, 16) if value.startswith("0x") else int(value)
    except ValueError as e:
        raise TransportError(f"Unexpected quantity: {value!r}") from e


def _encode_tag(number_or_tag: BlockTag) -> str:
    if isinstance(number_or_tag, int):
        if number_or_tag < 0:
            raise ValueError("номер блока должен быть >= 0")
        return hex(number_or_tag)
    return number_or_tag


class ExecutionClient:
    """JSON-RPC клиент execution-узла поверх aiohttp.

    Используется внутри `async with`; каждый вызов ограничен таймаутом.
    """

    def __init__(self, url: str, *, timeout_s: float = 10.0,
                connect_timeout_s: float = 3.0,
                ws_url: Optional[str] = None,
                user_agent: str = "nodewatch/0.1"):
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Неправильный URL формат: {url}")
        if timeout_s <= 0:
            raise ValueError("timeout_s должен быть > 0")

        self.url = url
        self.ws_url = ws_url
        self._connect_timeout_s = min(connect_timeout_s, timeout_s)
        self._timeout_s = timeout_s
        self._user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def __aenter__(self):
        # дефолт сессии ограничивает только установку соединения (нужно для ws),
        # для JSON-RPC запросов таймаут задаётся в каждом вызове
        self._session = aiohttp.ClientSession(
            headers={"User-Agent": self._user_agent},
            timeout=aiohttp.ClientTimeout(total=None, connect=self._connect_timeout_s, sock_connect=self._connect_timeout_s)
        )
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType]
    ) -> None:
        if self._session:
            try:
                await self._session.close()
            except Exception as e:
                logger.warning(f"Failed to close session: {e}")
        self._session = None

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(connect=self._connect_timeout_s, total=self._timeout_s)

    async def raw_call(self, method: str, params: Optional[list] = None) -> Any:
        if self._session is None:
            raise RuntimeError("ExecutionClient должен использоваться внутри 'async with' блока")
        payload = {"jsonrpc": "2.0", "method": method, "params": params or [], "id": next(self._ids)}
        try:
            async with self._session.post(self.url, json=payload, timeout=self._timeout()) as response:
                if not (200 <= response.status < 300):
                    raise TransportError(f"{method}: HTTP {response.status} from {self.url}")
                body = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method}: timeout after {self._timeout_s}s ({self.url})") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{method}: {(str(e) or 'Client error')[:512]}") from e
        except ValueError as e:
            raise TransportError(f"{method}: invalid JSON from {self.url}") from e

        if not isinstance(body, dict):
            raise TransportError(f"{method}: unexpected response {body!r:.200}")
        if body.get("error"):
            err = body["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise TransportError(f"{method}: RPC error: {message}")
        return body.get("result")

    async def get_height(self) -> int:
        return _hex_to_int(await self.raw_call("eth_blockNumber"))

    async def get_block(self, number_or_tag: BlockTag = "latest") -> BlockInfo:
        result = await self.raw_call("eth_getBlockByNumber", [_encode_tag(number_or_tag), False])
        if not isinstance(result, dict):
            raise TransportError(f"Block {number_or_tag} not found on {self.url}")
        return BlockInfo(
            number=_hex_to_int(result.get("number")),
            hash=str(result.get("hash")),
            timestamp=_hex_to_int(result.get("timestamp")),
        )

    async def get_network_id(self) -> int:
        return _hex_to_int(await self.raw_call("eth_chainId"))

    async def get_peer_count(self) -> int:
        return _hex_to_int(await self.raw_call("net_peerCount"))

    async def get_client_version(self) -> str:
        return str(await self.raw_call("web3_clientVersion"))

    async def subscribe_new_blocks(self) -> AsyncIterator[int]:
        """Подписка newHeads по WebSocket: отдаёт номера новых блоков.

        Любой обрыв соединения поднимается как TransportError;
        переподключением занимается вызывающая сторона.
        """
        if self._session is None:
            raise RuntimeError("ExecutionClient должен использоваться внутри 'async with' блока")
        if not self.ws_url:
            raise TransportError("WebSocket endpoint is not configured")
        try:
            async with self._session.ws_connect(self.ws_url, heartbeat=30) as ws:
                await ws.send_json({"jsonrpc": "2.0", "method": "eth_subscribe", "params": ["newHeads"], "id": next(self._ids)})
                try:
                    ack = await asyncio.wait_for(ws.receive_json(), timeout=self._timeout_s)
                except (TypeError, ValueError) as e:
                    # закрытие сокета или не-JSON вместо подтверждения
                    raise TransportError(f"eth_subscribe: no confirmation from {self.ws_url}: {e}") from e
                if not isinstance(ack, dict):
                    raise TransportError(f"eth_subscribe: unexpected reply {ack!r:.200}")
                if ack.get("error") or not ack.get("result"):
                    raise TransportError(f"eth_subscribe rejected: {ack.get('error')}")
                logger.info("Subscribed to newHeads on %s (id=%s)", self.ws_url, ack["result"])
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        try:
                            data = json.loads(msg.data)
                            head = data["params"]["result"]
                        except (ValueError, KeyError, TypeError):
                            logger.debug("Skipping unexpected ws message: %.200s", msg.data)
                            continue
                        if not isinstance(head, dict):
                            logger.debug("Skipping unexpected ws message: %.200s", msg.data)
                            continue
                        yield _hex_to_int(head.get("number"))
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
        except asyncio.TimeoutError as e:
            raise TransportError(f"WebSocket timeout ({self.ws_url})") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"WebSocket error: {(str(e) or 'Client error')[:512]}") from e
        raise TransportError(f"WebSocket closed by {self.ws_url}")
