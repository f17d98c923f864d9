"""
API Budget Tracking
===================

Tracks how many calls each external provider has received in its
current rate-limit window and answers "can we call this provider now".

Windows are fixed buckets: window id = floor(now / window_size). The
first access that observes a newer window id resets that counter to
zero before anything else reads or writes it, and the reset happens
under the same lock as the read, so no caller ever sees a counter
from a previous window.

Exceeding a limit is not an error. `can_use()` returns False and the
caller falls back to cached data (or nothing).

Persistence:
- One small JSON document per provider family (market data, AI)
- Writes are debounced: rapid `record()` calls coalesce into a single
  write after a short quiet period
- `close()` (also run on interpreter exit and on context-manager exit)
  cancels any pending write and flushes synchronously

Tier limits:
- TwelveData: free 8/min + 800/day, basic 30/min + 5000/day, pro 80/min
- Polygon.io: free 5/min, starter 100/min, developer 1000/min, advanced unlimited
- Finnhub: free 60/min, premium 300/min
- Alpha Vantage: free 25/day, premium 75/min
"""

from abc import ABC, abstractmethod
import asyncio
import atexit
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

UNLIMITED = -1


class WindowKind(Enum):
    """Rate-limit window granularity. Value is the window size in seconds."""
    MINUTE = 60
    HOUR = 3600
    DAY = 86400

    def window_id(self, now: float) -> int:
        return int(now // self.value)


# provider -> tier -> {window kind: limit}
PROVIDER_TIERS: Dict[str, Dict[str, Dict[WindowKind, int]]] = {
    "twelvedata": {
        "free": {WindowKind.MINUTE: 8, WindowKind.DAY: 800},
        "basic": {WindowKind.MINUTE: 30, WindowKind.DAY: 5000},
        "pro": {WindowKind.MINUTE: 80, WindowKind.DAY: UNLIMITED},
    },
    "polygon": {
        "free": {WindowKind.MINUTE: 5},
        "starter": {WindowKind.MINUTE: 100},
        "developer": {WindowKind.MINUTE: 1000},
        "advanced": {WindowKind.MINUTE: UNLIMITED},
    },
    "finnhub": {
        "free": {WindowKind.MINUTE: 60},
        "premium": {WindowKind.MINUTE: 300},
    },
    "alpha_vantage": {
        "free": {WindowKind.DAY: 25},
        "premium": {WindowKind.MINUTE: 75},
    },
}


@dataclass(frozen=True)
class BudgetStatus:
    """Snapshot of one provider's most constrained window."""
    provider: str
    used: int
    limit: int
    remaining: int
    window: int
    window_kind: str
    tier: str
    unlimited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "window": self.window,
            "window_kind": self.window_kind,
            "tier": self.tier,
            "unlimited": self.unlimited,
        }


# ============== PERSISTENCE ==============

class BudgetStore:
    """
    JSON file holding one provider family's counters.

    Loading is forgiving: a missing, empty or corrupt file yields an
    empty document so trackers start from fresh windows.
    """

    def __init__(self, path: Optional[str]):
        self.path = path

    def load(self) -> Dict[str, Any]:
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load budget state from {self.path}: {e}")
            return {}

    def save(self, data: Dict[str, Any]):
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)


class DebouncedFlush:
    """
    Coalesces bursts of writes into one.

    `schedule()` cancels any pending flush and starts a new one that
    fires after `delay` seconds of quiet. Outside a running event loop
    there is nothing to schedule on, so the write happens immediately.
    `flush()` cancels the pending task and writes synchronously.
    """

    def __init__(self, callback: Callable[[], None], delay: float = 0.1):
        self.callback = callback
        self.delay = delay
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self):
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._run()
            return
        self._task = loop.create_task(self._delayed())

    async def _delayed(self):
        await asyncio.sleep(self.delay)
        self._task = None
        self._run()

    def _run(self):
        try:
            self.callback()
        except OSError as e:
            logger.error(f"Failed to persist budget state: {e}")

    def cancel(self):
        task = self._task
        self._task = None
        # A task left behind by an already-closed loop cannot be cancelled
        if task is not None and not task.done() and not task.get_loop().is_closed():
            task.cancel()

    def flush(self):
        self.cancel()
        self._run()


class _PersistentTracker(ABC):
    """Shared debounce, locking and shutdown plumbing for budget trackers."""

    def __init__(
        self,
        store: Optional[BudgetStore] = None,
        clock: Callable[[], float] = time.time,
        flush_delay: float = 0.1,
        register_atexit: bool = True,
    ):
        self.store = store or BudgetStore(None)
        self.clock = clock
        self._lock = threading.Lock()
        self._flusher = DebouncedFlush(self._persist, delay=flush_delay)
        self._closed = False
        self._atexit_registered = register_atexit
        if register_atexit:
            atexit.register(self.close)

    @abstractmethod
    def _snapshot(self) -> Dict[str, Any]:
        """State to persist, read under the tracker lock."""

    def _persist(self):
        with self._lock:
            data = self._snapshot()
        self.store.save(data)

    def close(self):
        """Flush pending state synchronously. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._flusher.flush()
        if self._atexit_registered:
            atexit.unregister(self.close)
            self._atexit_registered = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


# ============== MARKET DATA BUDGET ==============

class ApiBudgetTracker(_PersistentTracker):
    """
    Per-provider call budget for market data APIs.

    Example Usage:
        async with ApiBudgetTracker(BudgetStore("state/api_budget.json"),
                                    tiers={"twelvedata": "free"}) as budget:
            if budget.try_acquire("twelvedata"):
                quote = await provider.fetch_quotes(["AAPL"])
    """

    def __init__(
        self,
        store: Optional[BudgetStore] = None,
        tiers: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.time,
        flush_delay: float = 0.1,
        register_atexit: bool = True,
    ):
        super().__init__(store, clock, flush_delay, register_atexit)
        self.tiers: Dict[str, str] = {p: "free" for p in PROVIDER_TIERS}
        self.tiers.update(tiers or {})
        # provider -> window kind name -> {"window": id, "used": n}
        self._counters: Dict[str, Dict[str, Dict[str, int]]] = {}
        self._load()

    def _load(self):
        data = self.store.load()
        providers = data.get("providers", {}) if isinstance(data, dict) else {}
        for provider, windows in providers.items():
            if not isinstance(windows, dict):
                continue
            for kind_name, counter in windows.items():
                if not isinstance(counter, dict):
                    continue
                self._counters.setdefault(provider, {})[kind_name] = {
                    "window": int(counter.get("window", 0) or 0),
                    "used": int(counter.get("used", 0) or 0),
                }

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "version": 1,
            "tiers": dict(self.tiers),
            "providers": {
                p: {k: dict(c) for k, c in windows.items()}
                for p, windows in self._counters.items()
            },
        }

    def limits(self, provider: str) -> Dict[WindowKind, int]:
        tiers = PROVIDER_TIERS.get(provider)
        if not tiers:
            return {}
        tier = self.tiers.get(provider, "free")
        return tiers.get(tier) or tiers["free"]

    def set_tier(self, provider: str, tier: str):
        if tier not in PROVIDER_TIERS.get(provider, {}):
            raise ValueError(f"Unknown tier '{tier}' for provider '{provider}'")
        with self._lock:
            self.tiers[provider] = tier
        self._flusher.schedule()

    def _counter(self, provider: str, kind: WindowKind, now: float) -> Dict[str, int]:
        """Return the counter for the current window, resetting it on rollover. Caller holds the lock."""
        current = kind.window_id(now)
        counter = self._counters.setdefault(provider, {}).setdefault(
            kind.name.lower(), {"window": current, "used": 0}
        )
        # Window ids only move forward; a clock stepping back keeps the newer window
        if current > counter["window"]:
            counter["window"] = current
            counter["used"] = 0
        return counter

    def _can_use_locked(self, provider: str, now: float, cost: int = 1) -> bool:
        for kind, limit in self.limits(provider).items():
            if limit == UNLIMITED:
                continue
            if self._counter(provider, kind, now)["used"] + cost > limit:
                return False
        return True

    def _record_locked(self, provider: str, now: float, cost: int = 1):
        for kind, limit in self.limits(provider).items():
            if limit == UNLIMITED:
                continue
            self._counter(provider, kind, now)["used"] += cost

    def can_use(self, provider: str, cost: int = 1) -> bool:
        """Return True if every window of the provider has room for `cost` more calls."""
        with self._lock:
            return self._can_use_locked(provider, self.clock(), cost)

    def record(self, provider: str, cost: int = 1):
        """Count `cost` calls against every limited window of the provider."""
        with self._lock:
            self._record_locked(provider, self.clock(), cost)
        self._flusher.schedule()

    def try_acquire(self, provider: str, cost: int = 1) -> bool:
        """Atomically check and record `cost` calls. Returns False when out of budget."""
        with self._lock:
            now = self.clock()
            if not self._can_use_locked(provider, now, cost):
                return False
            self._record_locked(provider, now, cost)
        self._flusher.schedule()
        return True

    def status(self, provider: str) -> BudgetStatus:
        """Status of the provider's most constrained window."""
        tier = self.tiers.get(provider, "free")
        with self._lock:
            now = self.clock()
            tightest: Optional[BudgetStatus] = None
            for kind, limit in self.limits(provider).items():
                if limit == UNLIMITED:
                    continue
                counter = self._counter(provider, kind, now)
                candidate = BudgetStatus(
                    provider=provider,
                    used=counter["used"],
                    limit=limit,
                    remaining=max(0, limit - counter["used"]),
                    window=counter["window"],
                    window_kind=kind.name.lower(),
                    tier=tier,
                )
                if tightest is None or candidate.remaining < tightest.remaining:
                    tightest = candidate
        if tightest is None:
            return BudgetStatus(
                provider=provider,
                used=0,
                limit=UNLIMITED,
                remaining=UNLIMITED,
                window=WindowKind.DAY.window_id(now),
                window_kind=WindowKind.DAY.name.lower(),
                tier=tier,
                unlimited=True,
            )
        return tightest

    def status_all(self) -> Dict[str, BudgetStatus]:
        return {provider: self.status(provider) for provider in PROVIDER_TIERS}


# ============== AI BUDGET ==============

class AIBudgetTracker(_PersistentTracker):
    """
    Daily budget for reasoning backend calls.

    The daily limit is user-configurable between 5 and 100; -1 disables
    the limit entirely.
    """

    DEFAULT_DAILY_LIMIT = 15
    MIN_DAILY_LIMIT = 5
    MAX_DAILY_LIMIT = 100

    def __init__(
        self,
        store: Optional[BudgetStore] = None,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        clock: Callable[[], float] = time.time,
        flush_delay: float = 0.1,
        register_atexit: bool = True,
    ):
        super().__init__(store, clock, flush_delay, register_atexit)
        self.daily_limit = self._clamp_limit(daily_limit)
        data = self.store.load()
        self._window = int(data.get("window", 0) or 0)
        self._calls = int(data.get("calls", 0) or 0)

    @classmethod
    def _clamp_limit(cls, limit: int) -> int:
        if limit == UNLIMITED:
            return UNLIMITED
        return max(cls.MIN_DAILY_LIMIT, min(cls.MAX_DAILY_LIMIT, int(limit)))

    @property
    def unlimited(self) -> bool:
        return self.daily_limit == UNLIMITED

    def _snapshot(self) -> Dict[str, Any]:
        return {"version": 1, "window": self._window, "calls": self._calls, "daily_limit": self.daily_limit}

    def _roll_locked(self):
        current = WindowKind.DAY.window_id(self.clock())
        if current > self._window:
            self._window = current
            self._calls = 0

    def can_make_call(self) -> bool:
        if self.unlimited:
            return True
        with self._lock:
            self._roll_locked()
            return self._calls < self.daily_limit

    def record_call(self):
        with self._lock:
            self._roll_locked()
            self._calls += 1
        self._flusher.schedule()

    def try_acquire(self) -> bool:
        with self._lock:
            self._roll_locked()
            if not self.unlimited and self._calls >= self.daily_limit:
                return False
            self._calls += 1
        self._flusher.schedule()
        return True

    def set_daily_limit(self, limit: int):
        with self._lock:
            self.daily_limit = self._clamp_limit(limit)
        self._flusher.schedule()

    def reset(self):
        with self._lock:
            self._calls = 0
        self._flusher.schedule()

    def status(self) -> BudgetStatus:
        with self._lock:
            self._roll_locked()
            used, window = self._calls, self._window
        remaining = UNLIMITED if self.unlimited else max(0, self.daily_limit - used)
        return BudgetStatus(
            provider="ai",
            used=used,
            limit=self.daily_limit,
            remaining=remaining,
            window=window,
            window_kind=WindowKind.DAY.name.lower(),
            tier="unlimited" if self.unlimited else "daily",
            unlimited=self.unlimited,
        )
