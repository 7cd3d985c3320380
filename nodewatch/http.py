from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any, Optional, Tuple, Type

import aiohttp

from nodewatch.errors import TransportError

logger = logging.getLogger(__name__)


class HttpClient:
	"""Базовый HTTP-клиент: одна сессия aiohttp на время `async with`, таймаут на каждый запрос."""

	def __init__(self, base_url: str, *, connect_timeout_s: float = 3.0, read_timeout_s: float = 7.0, headers: Optional[dict] = None) -> None:
		if not base_url.startswith(("http://", "https://")):
			raise ValueError(f"Неправильный URL формат: {base_url}")
		self.base_url = base_url.rstrip("/")
		self._timeout = aiohttp.ClientTimeout(connect=connect_timeout_s, total=connect_timeout_s + read_timeout_s)
		self._headers = headers or {}
		self._session: Optional[aiohttp.ClientSession] = None

	async def __aenter__(self):
		self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)
		return self

	async def __aexit__(
		self,
		exc_type: Optional[Type[BaseException]],
		exc_val: Optional[BaseException],
		exc_tb: Optional[TracebackType],
	) -> None:
		if self._session:
			try:
				await self._session.close()
			except Exception as e:
				logger.warning("Failed to close session: %s", e)
		self._session = None

	def _url(self, path: str) -> str:
		return f"{self.base_url}{path}" if path else self.base_url

	async def _get(self, path: str = "", *, any_status: bool = False) -> Tuple[int, str]:
		"""GET -> (код, тело). Не-2xx превращается в TransportError, если не задан any_status."""
		if self._session is None:
			raise RuntimeError(f"{type(self).__name__} должен использоваться внутри 'async with' блока")
		url = self._url(path)
		try:
			async with self._session.get(url) as resp:
				body = await resp.text()
				if not any_status and not (200 <= resp.status < 300):
					raise TransportError(f"GET {url}: HTTP {resp.status}")
				return resp.status, body
		except asyncio.TimeoutError as e:
			raise TransportError(f"GET {url}: timeout") from e
		except aiohttp.ClientError as e:
			raise TransportError(f"GET {url}: {(str(e) or 'Client error')[:512]}") from e

	async def _get_json(self, path: str = "") -> Any:
		if self._session is None:
			raise RuntimeError(f"{type(self).__name__} должен использоваться внутри 'async with' блока")
		url = self._url(path)
		try:
			async with self._session.get(url) as resp:
				if not (200 <= resp.status < 300):
					raise TransportError(f"GET {url}: HTTP {resp.status}")
				return await resp.json(content_type=None)
		except asyncio.TimeoutError as e:
			raise TransportError(f"GET {url}: timeout") from e
		except aiohttp.ClientError as e:
			raise TransportError(f"GET {url}: {(str(e) or 'Client error')[:512]}") from e
		except ValueError as e:
			raise TransportError(f"GET {url}: invalid JSON") from e
