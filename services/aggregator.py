"""Concurrent per-entity fetching and merging of keyed results."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, TypeVar

from services.upstream import FetchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = TypeVar("P")


def deep_merge(destination: Mapping[str, Any], source: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``source`` into a copy of ``destination``.

    Where both sides hold a dict the merge recurses; otherwise the source
    value replaces the destination value. Keys only present in
    ``destination`` are kept.
    """
    merged = dict(destination)
    for key, value in source.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class Aggregator:
    """Fan out one fetch per entity and key the payloads by identifier."""

    def __init__(self, key_field: str = "station") -> None:
        self.key_field = key_field

    @staticmethod
    def is_complete(entity: Mapping[str, Any]) -> bool:
        return bool(entity.get("station")) and bool(entity.get("tkyid"))

    async def aggregate(
        self,
        entities: Iterable[Mapping[str, Any]],
        fetch: Callable[[Mapping[str, Any]], Awaitable[FetchResult[T]]],
        transform: Callable[[T], P],
        default: Callable[[], P],
        require_complete: bool = True,
    ) -> Dict[str, P]:
        """Fetch every entity concurrently.

        A failed fetch only affects its own key, which receives ``default()``.
        Entities missing ``station`` or ``tkyid`` are skipped unless
        ``require_complete`` is false.
        """
        selected = [
            entity
            for entity in entities
            if entity.get(self.key_field) and (not require_complete or self.is_complete(entity))
        ]
        results = await asyncio.gather(*(fetch(entity) for entity in selected))

        aggregated: Dict[str, P] = {}
        for entity, result in zip(selected, results):
            key = str(entity[self.key_field])
            if result.ok and result.value is not None:
                aggregated[key] = transform(result.value)
                continue
            reason: Optional[str] = result.error.reason if result.error else "empty response"
            logger.warning(
                "Using default payload",
                extra={"station": entity.get("station"), "tkyid": entity.get("tkyid"), "reason": reason},
            )
            aggregated[key] = default()
        return aggregated
