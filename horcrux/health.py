"""Round-trip tracking of remote cosigners to pick the fastest ones."""

from __future__ import annotations

import logging
import threading
import time

from horcrux.cosigner import Cosigner, Leader

PING_INTERVAL = 1.0
PING_TIMEOUT = 1.0


class CosignerHealth:
    """Pings remote cosigners and orders cosigners by round-trip time.

    ``rtt`` maps a cosigner ID to its last round trip in nanoseconds,
    or -1 when the cosigner is unhealthy.
    """

    def __init__(
        self,
        cosigners: list[Cosigner],
        leader: Leader,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cosigners = list(cosigners)
        self.leader = leader
        self.logger = logger or logging.getLogger(__name__)
        self.rtt: dict[int, int] = {}
        self._lock = threading.Lock()

    def reconcile(self) -> None:
        """Ping every remote cosigner concurrently, if this node is leader."""
        if not self.leader.is_leader():
            return
        threads = [
            threading.Thread(target=self._update_rtt, args=(c,), daemon=True)
            for c in self.cosigners
            if c.remote
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def start(self, stop_event: threading.Event) -> None:
        """Reconcile every ping interval until ``stop_event`` is set."""
        while True:
            self.reconcile()
            if stop_event.wait(PING_INTERVAL):
                return

    def mark_unhealthy(self, cosigner: Cosigner) -> None:
        with self._lock:
            self.rtt[cosigner.id] = -1

    def _update_rtt(self, cosigner: Cosigner) -> None:
        rtt = -1
        start = time.monotonic()
        try:
            cosigner.ping(PING_TIMEOUT)
        except Exception as exc:  # any failure marks the peer unhealthy
            self.logger.error("Failed to ping cosigner %s: %s", cosigner.id, exc)
        else:
            rtt = int((time.monotonic() - start) * 1e9)
        finally:
            with self._lock:
                self.rtt[cosigner.id] = rtt

    def get_fastest(self) -> list[Cosigner]:
        """Return all cosigners, fastest first; unknown or unhealthy ones last."""
        with self._lock:
            rtt = dict(self.rtt)

        def key(cosigner: Cosigner) -> tuple[bool, int]:
            value = rtt.get(cosigner.id, -1)
            return (value == -1, value)

        return sorted(self.cosigners, key=key)