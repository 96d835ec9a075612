"""Freshness strategies for cached results.

A strategy descriptor tells the cache how old an entry may be and still be
served. Evaluating a descriptor yields a *cutoff*: the minimum ``updated_at``
a cached entry must have. Evaluating to ``None`` means "do not look in the
cache at all", which callers treat as an ordinary miss.

Built-in strategies:
    - ``ttl``: scales the allowed age by the query's average execution time.
    - ``none``: never serve from cache.

Other strategy types are resolved through a registry so deployments can
plug in additional policies at process start.

Example:
    >>> from resultcache.strategies import StrategyDescriptor, register_strategy
    >>>
    >>> @register_strategy("duration")
    ... def duration_cutoff(descriptor, query_hash, now):
    ...     return now - timedelta(hours=descriptor.extra["hours"])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from resultcache.base import short_hex_hash

logger = logging.getLogger(__name__)


class StrategyType(str, Enum):
    """Built-in strategy types."""

    TTL = "ttl"
    NONE = "none"


# Cutoff for windows reaching past the representable range.
EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ms_before(now: datetime, milliseconds: float) -> datetime:
    """``now`` minus ``milliseconds``, clamped to ``EARLIEST`` on overflow."""
    try:
        return now - timedelta(milliseconds=milliseconds)
    except OverflowError:
        return EARLIEST


@dataclass
class StrategyDescriptor:
    """Caller-supplied freshness policy.

    Attributes:
        type: Strategy tag (``"ttl"``, ``"none"`` or a registered extension).
        multiplier: How many average execution times an entry stays fresh.
        avg_execution_ms: Expected cost of recomputing the query. Required
            by ``ttl``; without it the lookup is skipped.
        invalidated_at: Entries written before this instant are invalid
            regardless of age.
        extra: Additional fields for extension strategies.
    """

    type: str = StrategyType.TTL.value
    multiplier: float = 1.0
    avg_execution_ms: float | None = None
    invalidated_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.type, StrategyType):
            self.type = self.type.value
        if self.multiplier < 0:
            raise ValueError("multiplier must be non-negative")
        if self.avg_execution_ms is not None and self.avg_execution_ms < 0:
            raise ValueError("avg_execution_ms must be non-negative")

    @classmethod
    def ttl(
        cls,
        multiplier: float,
        avg_execution_ms: float | None,
        invalidated_at: datetime | None = None,
    ) -> "StrategyDescriptor":
        """Shortcut for a ``ttl`` descriptor."""
        return cls(
            type=StrategyType.TTL.value,
            multiplier=multiplier,
            avg_execution_ms=avg_execution_ms,
            invalidated_at=invalidated_at,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StrategyDescriptor":
        """Create from a producer-shaped dict.

        Accepts ``avg_execution_ms``, ``avg-execution-ms`` or
        ``avgExecutionMs`` (and likewise for ``invalidated_at``).
        """
        known = {"type", "multiplier"}

        def pick(*names: str) -> Any:
            for name in names:
                if name in data:
                    known.add(name)
                    return data[name]
            return None

        avg = pick("avg_execution_ms", "avg-execution-ms", "avgExecutionMs")
        invalidated = pick("invalidated_at", "invalidated-at", "invalidatedAt")
        if isinstance(invalidated, str):
            invalidated = datetime.fromisoformat(invalidated)

        return cls(
            type=str(data.get("type", StrategyType.TTL.value)),
            multiplier=float(data.get("multiplier", 1.0)),
            avg_execution_ms=float(avg) if avg is not None else None,
            invalidated_at=invalidated,
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "multiplier": self.multiplier,
            "avg_execution_ms": self.avg_execution_ms,
            "invalidated_at": (
                self.invalidated_at.isoformat() if self.invalidated_at else None
            ),
            **self.extra,
        }


# (descriptor, query_hash, now) -> cutoff or None
StrategyFunction = Callable[[StrategyDescriptor, bytes, datetime], "datetime | None"]

# Registry of extension strategies, keyed by type tag
_strategy_registry: dict[str, StrategyFunction] = {}


def register_strategy(name: str) -> Callable[[StrategyFunction], StrategyFunction]:
    """Decorator to register an extension strategy.

    Built-in types cannot be overridden.

    Args:
        name: Strategy type tag.

    Returns:
        Decorator function.
    """

    def decorator(func: StrategyFunction) -> StrategyFunction:
        register_strategy_evaluator(name, func)
        return func

    return decorator


def register_strategy_evaluator(name: str, func: StrategyFunction) -> None:
    """Register an extension strategy function under ``name``."""
    if name in {t.value for t in StrategyType}:
        raise ValueError(f"Cannot override built-in strategy '{name}'")
    _strategy_registry[name] = func


def unregister_strategy(name: str) -> None:
    """Remove an extension strategy. Unknown names are ignored."""
    _strategy_registry.pop(name, None)


def list_strategies() -> list[str]:
    """List built-in and registered strategy types."""
    return [t.value for t in StrategyType] + sorted(_strategy_registry)


def ttl_cutoff(
    descriptor: StrategyDescriptor,
    query_hash: bytes,
    now: datetime,
) -> datetime | None:
    """Cutoff for the ``ttl`` strategy.

    The allowed age is ``multiplier * avg_execution_ms``. An explicit
    ``invalidated_at`` always wins over a more permissive window.
    """
    if descriptor.avg_execution_ms is None:
        logger.debug(
            f"Caching strategy {descriptor.to_dict()!r} needs avg_execution_ms to work"
        )
        return None

    max_age_ms = descriptor.multiplier * descriptor.avg_execution_ms
    cutoff = ms_before(now, max_age_ms)
    if descriptor.invalidated_at is not None:
        cutoff = max(cutoff, as_utc(descriptor.invalidated_at))
    return cutoff


class StrategyEvaluator:
    """Turns strategy descriptors into cutoff timestamps.

    Example:
        >>> evaluator = StrategyEvaluator()
        >>> cutoff = evaluator.evaluate(StrategyDescriptor.ttl(2, 1000), b"...")
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize the evaluator.

        Args:
            clock: Returns the current time. Defaults to aware UTC now.
        """
        self._clock = clock or utc_now

    def now(self) -> datetime:
        """Current time according to this evaluator's clock, in UTC."""
        return as_utc(self._clock())

    def evaluate(
        self,
        descriptor: StrategyDescriptor,
        query_hash: bytes,
    ) -> datetime | None:
        """Compute the cutoff for ``descriptor``.

        Returns:
            Minimum acceptable ``updated_at`` (aware UTC), or None if the
            cache should not be consulted.
        """
        now = self.now()

        if descriptor.type == StrategyType.TTL.value:
            return ttl_cutoff(descriptor, query_hash, now)
        if descriptor.type == StrategyType.NONE.value:
            return None

        func = _strategy_registry.get(descriptor.type)
        if func is None:
            logger.debug(
                f"No evaluator registered for caching strategy '{descriptor.type}'"
            )
            return None

        try:
            cutoff = func(descriptor, query_hash, now)
        except Exception:
            logger.warning(
                f"Caching strategy '{descriptor.type}' failed for query "
                f"{short_hex_hash(query_hash)}, treating as cache miss",
                exc_info=True,
            )
            return None
        return as_utc(cutoff) if cutoff is not None else None
