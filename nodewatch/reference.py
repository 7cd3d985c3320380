from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Sequence

from nodewatch.errors import NoReferenceAvailable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0


async def _fan_out(references: Sequence[Any], call: Callable[[Any], Awaitable[Any]], timeout_s: float) -> List[Any]:
	"""Параллельно опросить все референсы; вернуть успешные ответы в исходном порядке."""
	if not references:
		raise NoReferenceAvailable("no reference endpoints configured")

	async def one(ref: Any) -> Any:
		return await asyncio.wait_for(call(ref), timeout=timeout_s)

	results = await asyncio.gather(*(one(r) for r in references), return_exceptions=True)
	ok: List[Any] = []
	for ref, res in zip(references, results):
		if isinstance(res, BaseException):
			if isinstance(res, asyncio.CancelledError):
				raise res
			logger.warning("Reference %s failed: %s", getattr(ref, "url", ref), str(res) or type(res).__name__)
			continue
		ok.append(res)
	return ok


async def resolve_canonical_height(references: Sequence[Any], timeout_s: float = DEFAULT_TIMEOUT_S) -> int:
	"""Каноническая высота = максимум среди ответивших референсов.

	Отставшие референсы никогда не считаются каноном, поэтому максимум, а не медиана.
	"""
	heights = await _fan_out(references, lambda r: r.get_height(), timeout_s)
	if not heights:
		raise NoReferenceAvailable(f"all {len(references)} reference endpoints failed")
	return max(heights)


async def resolve_reference_hash(references: Sequence[Any], number: int, timeout_s: float = DEFAULT_TIMEOUT_S) -> str:
	"""Хэш блока `number` по первому ответившему референсу (в порядке конфигурации).

	Сравнение идёт с одним референсом, а не с любым из ответивших: расхождение
	с первым в списке уже считается форком.
	"""
	blocks = await _fan_out(references, lambda r: r.get_block(number), timeout_s)
	if not blocks:
		raise NoReferenceAvailable(f"no reference returned block {number}")
	return blocks[0].hash
