"""Pre-fetched nonces from cosigners, kept topped up to meet signing demand."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol

from horcrux.cosigner import Cosigner, CosignerNonce, CosignerUUIDNonces, Leader

DEFAULT_GET_NONCES_INTERVAL = 3.0
DEFAULT_GET_NONCES_TIMEOUT = 4.0
# half of the local cosigner cache expiration
DEFAULT_NONCE_EXPIRATION = 10.0
NONCE_OVERALLOCATION = 1.5

# proposal + prevote + precommit + vote extension
_NONCES_PER_BLOCK = 4
_BLOCK_TIME = 0.5
_POLL = 0.02


class _Sample(NamedTuple):
    time_since_last_reconcile: float
    nonces_per_minute: float


class MovingAverage:
    """Time-weighted average of nonce consumption over a sliding period (seconds)."""

    def __init__(self, period: float) -> None:
        self.period = period
        self.items: list[_Sample] = []

    def add(self, time_since_last_reconcile: float, nonces_per_minute: float) -> None:
        """Record a sample, dropping samples that fall outside the period."""
        duration = time_since_last_reconcile
        keep = len(self.items) - 1
        for i, item in enumerate(self.items):
            duration += item.time_since_last_reconcile
            if duration >= self.period:
                keep = i
                break
        self.items = [_Sample(time_since_last_reconcile, nonces_per_minute)] + self.items[: keep + 1]

    def average(self) -> float:
        """Return the weighted average nonces per minute, 0.0 with no samples."""
        duration = sum(item.time_since_last_reconcile for item in self.items)
        if duration == 0:
            return 0.0
        weighted = sum(item.nonces_per_minute * item.time_since_last_reconcile for item in self.items)
        return weighted / duration


@dataclass
class CosignerNoncesRel:
    """The nonces one cosigner contributed to a cached nonce set."""

    cosigner: Cosigner
    nonces: list[CosignerNonce] = field(default_factory=list)


@dataclass
class CachedNonce:
    """A set of nonces from several cosigners, all for one UUID.

    ``expiration`` is a :func:`time.monotonic` timestamp.
    """

    uuid: uuid.UUID
    expiration: float
    nonces: list[CosignerNoncesRel] = field(default_factory=list)


class NoncePruner(Protocol):
    def prune_nonces(self) -> int:
        ...


class NonceCache:
    """An ordered, lock-protected list of cached nonce sets, oldest first."""

    def __init__(self, nonces: list[CachedNonce] | None = None) -> None:
        self.nonces: list[CachedNonce] = list(nonces or [])
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self.nonces)

    def add(self, nonce: CachedNonce) -> None:
        with self.lock:
            self.nonces.append(nonce)

    def delete(self, index: int) -> None:
        with self.lock:
            del self.nonces[index]

    def prune_nonces(self) -> int:
        """Drop every nonce set before the first unexpired one; return the count."""
        with self.lock:
            now = time.monotonic()
            first_live = next(
                (i for i, n in enumerate(self.nonces) if now < n.expiration), None
            )
            if first_live is None:
                deleted = len(self.nonces)
                self.nonces = []
            else:
                deleted = first_live
                self.nonces = self.nonces[first_live:]
            return deleted


class NoNoncesError(LookupError):
    """Raised when no cached nonce set covers all requested cosigners."""


class CosignerNonceCache:
    """Keeps enough nonces from the cosigners cached to sign without waiting."""

    def __init__(
        self,
        cosigners: list[Cosigner],
        leader: Leader,
        get_nonces_interval: float = DEFAULT_GET_NONCES_INTERVAL,
        get_nonces_timeout: float = DEFAULT_GET_NONCES_TIMEOUT,
        nonce_expiration: float = DEFAULT_NONCE_EXPIRATION,
        threshold: int = 2,
        pruner: NoncePruner | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cosigners = list(cosigners)
        self.leader = leader
        self.get_nonces_interval = get_nonces_interval
        self.get_nonces_timeout = get_nonces_timeout
        self.nonce_expiration = nonce_expiration
        self.threshold = threshold
        self.logger = logger or logging.getLogger(__name__)
        self.cache = NonceCache()
        self.pruner: NoncePruner = pruner if pruner is not None else self.cache
        # weighted average over 4 intervals
        self.moving_average = MovingAverage(4 * get_nonces_interval)
        self._empty = threading.Event()
        self._state_lock = threading.Lock()
        self._last_reconcile_nonces = 0
        self._last_reconcile_time = time.monotonic()

    def target(self, nonces_per_minute: float) -> int:
        """Return how many nonces to keep cached for the given demand."""
        nonces_per_second = max(nonces_per_minute / 60, _NONCES_PER_BLOCK / _BLOCK_TIME)
        t = int(
            nonces_per_second
            * (self.get_nonces_interval * NONCE_OVERALLOCATION + self.get_nonces_timeout)
        )
        return t if t > 0 else 1

    def reconcile(self) -> None:
        """Prune expired nonces and, if leader, load enough to meet demand."""
        pruned = self.pruner.prune_nonces()
        if not self.leader.is_leader():
            return
        remaining = len(self.cache)
        now = time.monotonic()
        with self._state_lock:
            since_last = now - self._last_reconcile_time
            last_nonces = self._last_reconcile_nonces
        if since_last > 0:
            nonces_per_min = (last_nonces - remaining - pruned) / (since_last / 60)
        else:
            nonces_per_min = 0.0
        nonces_per_min = max(nonces_per_min, 0.0)

        self.moving_average.add(since_last, nonces_per_min)
        avg = self.moving_average.average()
        t = self.target(avg)
        additional = max(t - remaining, 0)

        try:
            if additional == 0:
                self.logger.debug(
                    "Cosigner nonce cache ahead of demand: target=%d remaining=%d "
                    "nonces_per_min=%.2f avg_nonces_per_min=%.2f",
                    t, remaining, nonces_per_min, avg,
                )
                return
            self.logger.debug(
                "Loading additional nonces to meet demand: target=%d remaining=%d "
                "additional=%d nonces_per_min=%.2f avg_nonces_per_min=%.2f",
                t, remaining, additional, nonces_per_min, avg,
            )
            self.load_n(additional)
        finally:
            with self._state_lock:
                self._last_reconcile_nonces = remaining + additional
                self._last_reconcile_time = time.monotonic()

    def _fetch_all(self, uuids: list[uuid.UUID]) -> list[tuple[Cosigner, list[CosignerUUIDNonces]]]:
        pool = ThreadPoolExecutor(max_workers=max(1, len(self.cosigners)))
        try:
            pending = [(c, pool.submit(c.get_nonces, uuids)) for c in self.cosigners]
            done, _ = wait([f for _, f in pending], timeout=self.get_nonces_timeout)
        finally:
            pool.shutdown(wait=False)
        fetched = []
        for cosigner, future in pending:
            if future not in done:
                self.logger.error("Failed to get nonces from peer %s: timed out", cosigner.id)
                continue
            exc = future.exception()
            if exc is not None:
                self.logger.error("Failed to get nonces from peer %s: %s", cosigner.id, exc)
                continue
            result = list(future.result())
            if len(result) != len(uuids):
                self.logger.error(
                    "Failed to get nonces from peer %s: got %d sets, wanted %d",
                    cosigner.id, len(result), len(uuids),
                )
                continue
            fetched.append((cosigner, result))
        return fetched

    def load_n(self, n: int) -> None:
        """Fetch ``n`` new nonce sets from all cosigners and cache the usable ones."""
        if n <= 0:
            return
        uuids = [uuid.uuid4() for _ in range(n)]
        expiration = time.monotonic() + self.nonce_expiration
        fetched = self._fetch_all(uuids)
        added = 0
        for i, u in enumerate(uuids):
            rels = [CosignerNoncesRel(cosigner, sets[i].nonces) for cosigner, sets in fetched]
            if len(rels) >= self.threshold:
                self.cache.add(CachedNonce(uuid=u, expiration=expiration, nonces=rels))
                added += 1
        self.logger.debug("Loaded nonces: desired=%d added=%d", n, added)

    def start(self, stop_event: threading.Event) -> None:
        """Reconcile every interval, or sooner when the cache runs dry, until stopped."""
        with self._state_lock:
            self._last_reconcile_nonces = len(self.cache)
            self._last_reconcile_time = time.monotonic()
        while True:
            deadline = time.monotonic() + self.get_nonces_interval
            while True:
                if stop_event.is_set():
                    return
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                if self._empty.wait(min(remaining, _POLL)):
                    self._empty.clear()
                    break
            self.reconcile()

    def get_nonces(self, fastest_peers: list[Cosigner]) -> CosignerUUIDNonces:
        """Take the oldest cached set that has nonces from every given peer."""
        with self.cache.lock:
            for i, cached in enumerate(self.cache.nonces):
                by_id = {}
                for rel in cached.nonces:
                    by_id.setdefault(rel.cosigner.id, rel)
                if not all(p.id in by_id for p in fastest_peers):
                    continue
                nonces = [n for p in fastest_peers for n in by_id[p.id].nonces]
                self.cache.delete(i)
                if not self.cache.nonces and not self._empty.is_set():
                    self.logger.debug("Nonce cache is empty, triggering reload")
                    self._empty.set()
                return CosignerUUIDNonces(uuid=cached.uuid, nonces=nonces)

        # counted so it is part of the burn rate at the next reconciliation
        with self._state_lock:
            self._last_reconcile_nonces += 1
        ids = " ".join(str(p.id) for p in fastest_peers)
        raise NoNoncesError(f"no nonces found involving cosigners [{ids}]")

    def clear_nonces(self, cosigner: Cosigner) -> None:
        """Remove a cosigner from every cached set, dropping sets that fall below threshold."""
        with self.cache.lock:
            kept = []
            for cached in self.cache.nonces:
                index = next(
                    (j for j, rel in enumerate(cached.nonces) if rel.cosigner.id == cosigner.id),
                    None,
                )
                if index is None:
                    kept.append(cached)
                    continue
                if len(cached.nonces) - 1 < self.threshold:
                    continue
                del cached.nonces[index]
                kept.append(cached)
            self.cache.nonces = kept