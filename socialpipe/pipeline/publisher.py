"""
Commit-synchronized publisher.

Runs a batch of side effects only after the surrounding unit of work has
committed. Each effect is isolated: a failure (or timeout) is logged and
counted, and the remaining effects of the batch still run. Nothing here is
retried; durability of an effect is the business of whatever consumes it.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from socialpipe.cache.store import CacheStore
from socialpipe.eventlog.log import EventLog
from socialpipe.pipeline.effects import (
    Effect,
    EffectKind,
    IncrementCounter,
    InvalidateCache,
    PublishEvent,
    PushListItem,
    RealtimePush,
)
from socialpipe.pipeline.unit_of_work import (
    UnitOfWork,
    UnitOfWorkState,
    UnitOfWorkStateError,
    current_unit_of_work,
)
from socialpipe.realtime.channel import PushChannel
from socialpipe.utils.logging import get_logger
from socialpipe.utils.timeouts import OperationTimeoutError, call_with_timeout

logger = get_logger(__name__)


@dataclass
class PublisherConfig:
    """
    Publisher configuration.
    
    Attributes:
        publish_timeout_ms: Maximum wait for an event append
        push_timeout_ms: Maximum wait for a real-time push
        background: Run committed batches on a worker pool instead of the
            committing thread
        max_workers: Threads for timeouts and background batches
    """
    publish_timeout_ms: int = 500
    push_timeout_ms: int = 500
    background: bool = False
    max_workers: int = 4
    
    def __post_init__(self) -> None:
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")
    
    @classmethod
    def from_config(cls, settings: Optional[Dict]) -> "PublisherConfig":
        settings = settings or {}
        return cls(
            publish_timeout_ms=int(settings.get("publish_timeout_ms", 500)),
            push_timeout_ms=int(settings.get("push_timeout_ms", 500)),
            background=bool(settings.get("background", False)),
            max_workers=int(settings.get("max_workers", 4)),
        )


class CommitSynchronizedPublisher:
    """
    Executes effect batches after commit.
    
    Example:
        >>> with UnitOfWork(db.begin()) as uow:
        ...     uow.transaction.insert(message)
        ...     publisher.register_after_commit([PublishEvent(payload)], uow)
    """
    
    def __init__(
        self,
        event_log: EventLog,
        cache_store: CacheStore,
        push_channel: PushChannel,
        config: Optional[PublisherConfig] = None,
    ):
        """
        Initialize publisher.
        
        Args:
            event_log: Destination of PUBLISH_EVENT effects
            cache_store: Destination of counter, list and invalidation effects
            push_channel: Destination of REALTIME_PUSH effects
            config: Publisher configuration
        """
        self.event_log = event_log
        self.cache_store = cache_store
        self.push_channel = push_channel
        self.config = config or PublisherConfig()
        
        self._timeout_executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="socialpipe-effect",
        )
        self._batch_executor: Optional[ThreadPoolExecutor] = None
        if self.config.background:
            # One worker keeps committed batches in commit order
            self._batch_executor = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix="socialpipe-batch",
            )
        
        self._lock = threading.Lock()
        self._closed = False
        
        self._batches = 0
        self._executed = 0
        self._failed: Dict[str, int] = {kind.value: 0 for kind in EffectKind}
        self._timed_out = 0
        self._inline_fallbacks = 0
        self._dropped_rolled_back = 0
        
        logger.info(
            "Publisher initialized",
            publish_timeout_ms=self.config.publish_timeout_ms,
            push_timeout_ms=self.config.push_timeout_ms,
            background=self.config.background,
        )
    
    def register_after_commit(
        self,
        effects: Iterable[Effect],
        unit_of_work: Optional[UnitOfWork] = None,
    ) -> None:
        """
        Schedule effects to run once the unit of work commits.
        
        With no active unit of work the effects run immediately, best
        effort, and a warning is logged. A unit that already rolled back
        never committed anything, so its effects are dropped. This never
        raises for effect failures.
        
        Args:
            effects: Effects in the order they must run
            unit_of_work: Unit to attach to (defaults to the context's)
        """
        batch = list(effects)
        if not batch:
            return
        
        uow = unit_of_work if unit_of_work is not None else current_unit_of_work()
        
        if uow is not None and uow.state is UnitOfWorkState.ROLLED_BACK:
            with self._lock:
                self._dropped_rolled_back += 1
            logger.warning(
                "Unit of work rolled back, dropping effects",
                effects=[effect.kind.value for effect in batch],
            )
            return
        
        if uow is not None and uow.is_active:
            try:
                uow.on_commit(lambda: self._dispatch(batch))
                return
            except UnitOfWorkStateError as e:
                logger.warning("After-commit registration failed", error=str(e))
        
        with self._lock:
            self._inline_fallbacks += 1
        
        logger.warning(
            "No active unit of work, executing effects inline",
            effects=[effect.kind.value for effect in batch],
        )
        self._dispatch(batch)
    
    def execute_now(self, effects: Iterable[Effect]) -> None:
        """Run effects immediately (for callers outside any transaction)."""
        self._dispatch(list(effects))
    
    def _dispatch(self, batch: List[Effect]) -> None:
        if self._batch_executor is not None and not self._closed:
            self._batch_executor.submit(self._run_batch, batch)
        else:
            self._run_batch(batch)
    
    def _run_batch(self, batch: List[Effect]) -> None:
        with self._lock:
            self._batches += 1
        
        for effect in batch:
            try:
                self._execute(effect)
                with self._lock:
                    self._executed += 1
            except OperationTimeoutError as e:
                with self._lock:
                    self._timed_out += 1
                    self._failed[effect.kind.value] += 1
                logger.warning("Effect timed out", error=str(e), **effect.describe())
            except Exception as e:
                with self._lock:
                    self._failed[effect.kind.value] += 1
                logger.error("Effect failed", error=str(e), **effect.describe())
    
    def _execute(self, effect: Effect) -> None:
        if isinstance(effect, PublishEvent):
            call_with_timeout(
                self._timeout_executor,
                lambda: self.event_log.publish_event(effect.payload),
                self.config.publish_timeout_ms,
                f"publish to {effect.payload.TOPIC}",
            )
        elif isinstance(effect, IncrementCounter):
            self.cache_store.increment(effect.key, effect.delta, effect.ttl_seconds)
        elif isinstance(effect, PushListItem):
            self.cache_store.push_bounded(
                effect.key,
                effect.item,
                effect.max_len,
                effect.ttl_seconds,
            )
        elif isinstance(effect, RealtimePush):
            call_with_timeout(
                self._timeout_executor,
                lambda: self.push_channel.push_to_user(
                    effect.user_id, effect.destination, effect.payload
                ),
                self.config.push_timeout_ms,
                f"push to user {effect.user_id}",
            )
        elif isinstance(effect, InvalidateCache):
            if effect.keys:
                self.cache_store.delete(*effect.keys)
            for pattern in effect.patterns:
                self.cache_store.delete_pattern(pattern)
        else:
            raise TypeError(f"Unknown effect: {effect!r}")
    
    def metrics(self) -> dict:
        """
        Publisher counters.
        
        Failures are never retried, so failed and timed_out are the only
        record of silently lost effects.
        """
        with self._lock:
            return {
                "batches": self._batches,
                "executed": self._executed,
                "failed": dict(self._failed),
                "timed_out": self._timed_out,
                "inline_fallbacks": self._inline_fallbacks,
                "dropped_rolled_back": self._dropped_rolled_back,
            }
    
    def close(self) -> None:
        """Wait for background batches and release worker threads."""
        if self._closed:
            return
        self._closed = True
        if self._batch_executor is not None:
            self._batch_executor.shutdown(wait=True)
        self._timeout_executor.shutdown(wait=True)
        logger.info("Publisher closed", **self.metrics())
