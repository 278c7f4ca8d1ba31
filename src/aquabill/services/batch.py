"""Bounded worker pool for per-item units of work."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from aquabill.core.exceptions import BusinessRuleViolation, ValidationError

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemResult:
    """What happened to one item of a batch."""

    key: str
    outcome: Outcome
    detail: str | None = None
    value: Any = None

    @classmethod
    def ok(cls, key: str, value: Any = None) -> ItemResult:
        return cls(key, Outcome.SUCCESS, value=value)

    @classmethod
    def skip(cls, key: str, reason: str) -> ItemResult:
        return cls(key, Outcome.SKIPPED, detail=reason)

    @classmethod
    def fail(cls, key: str, error: str) -> ItemResult:
        return cls(key, Outcome.FAILED, detail=error)


@dataclass
class BatchStats:
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    has_more: bool = False

    def record(self, result: ItemResult) -> None:
        self.processed += 1
        if result.outcome == Outcome.SUCCESS:
            self.succeeded += 1
        elif result.outcome == Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append({"key": result.key, "error": result.detail or ""})

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "has_more": self.has_more,
        }


class BatchRunner(Generic[ItemT]):
    """Runs a handler over a page of items with bounded concurrency.

    Every item is isolated: a rule violation counts as skipped, any other
    error as failed, and neither stops the rest of the batch.
    """

    def __init__(
        self,
        concurrency: int = 1,
        inter_item_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._concurrency = max(1, concurrency)
        self._delay = inter_item_delay
        self._sleep = sleep

    async def run(
        self,
        items: Iterable[ItemT],
        handler: Callable[[ItemT], Awaitable[ItemResult | None]],
        key: Callable[[ItemT], str] = str,
    ) -> BatchStats:
        semaphore = asyncio.Semaphore(self._concurrency)
        stats = BatchStats()

        async def _one(item: ItemT) -> ItemResult:
            async with semaphore:
                result = await self.run_item(item, handler, key)
                if self._delay:
                    await self._sleep(self._delay)
                return result

        results = await asyncio.gather(*(_one(item) for item in items))
        for result in results:
            stats.record(result)
        return stats

    async def run_item(
        self,
        item: ItemT,
        handler: Callable[[ItemT], Awaitable[ItemResult | None]],
        key: Callable[[ItemT], str] = str,
    ) -> ItemResult:
        item_key = key(item)
        try:
            result = await handler(item)
        except (BusinessRuleViolation, ValidationError) as exc:
            logger.info("Skipped %s: %s", item_key, exc)
            return ItemResult.skip(item_key, str(exc))
        except Exception as exc:
            logger.error("Failed to process %s: %s", item_key, exc, exc_info=True)
            return ItemResult.fail(item_key, str(exc))
        return result or ItemResult.ok(item_key)
