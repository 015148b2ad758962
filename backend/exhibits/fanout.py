"""Settle-all helpers for fan-out operations across record kinds."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Iterable

from .errors import ExhibitError

logger = logging.getLogger(__name__)


async def settle(awaitables: Iterable[Awaitable[Any]]) -> list[Any]:
    """Run every awaitable to completion; failures come back as exception objects."""

    return await asyncio.gather(*awaitables, return_exceptions=True)


def describe_failure(result: Any) -> str | None:
    """Human-readable reason for a failed settle result, ``None`` when it succeeded."""

    if isinstance(result, ExhibitError):
        return result.message
    if isinstance(result, BaseException):
        return f"{type(result).__name__}: {result}"
    if result is False:
        return "operation returned false"
    return None


@dataclass(slots=True)
class FanOutReport:
    """Per-target outcomes of one settle-all batch."""

    # purpose: aggregate settle-all results so callers can report partial failure counts
    # status: pilot
    succeeded: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "FanOutReport") -> "FanOutReport":
        self.succeeded.extend(other.succeeded)
        self.failed.extend(other.failed)
        return self

    def as_dict(self) -> dict[str, Any]:
        return {"succeeded": list(self.succeeded), "failed": list(self.failed)}


async def settle_labeled(operation: str, labeled: Iterable[tuple[str, Awaitable[Any]]]) -> FanOutReport:
    """Settle ``(label, awaitable)`` pairs and log each failure against its label."""

    pairs = list(labeled)
    results = await settle(awaitable for _, awaitable in pairs)
    report = FanOutReport()
    for (label, _), result in zip(pairs, results):
        reason = describe_failure(result)
        if reason is None:
            report.succeeded.append(label)
        else:
            logger.error("%s failed for %s: %s", operation, label, reason)
            report.failed.append({"target": label, "reason": reason})
    return report
