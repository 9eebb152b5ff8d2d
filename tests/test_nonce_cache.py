import threading
import time
import uuid

import pytest

from horcrux.cosigner import Cosigner, CosignerNonce, CosignerUUIDNonces, Leader
from horcrux.nonce_cache import (
    DEFAULT_NONCE_EXPIRATION,
    CachedNonce,
    CosignerNonceCache,
    CosignerNoncesRel,
    MovingAverage,
    NonceCache,
    NoNoncesError,
)


class FakeCosigner(Cosigner):
    def __init__(self, cosigner_id, total=3, fail=False):
        self._id = cosigner_id
        self._total = total
        self._fail = fail

    @property
    def id(self):
        return self._id

    @property
    def address(self):
        return f"tcp://127.0.0.1:{2221 + self._id}"

    def get_nonces(self, uuids):
        if self._fail:
            raise RuntimeError("unreachable")
        return [
            CosignerUUIDNonces(
                uuid=u,
                nonces=[
                    CosignerNonce(source_id=self._id, destination_id=d)
                    for d in range(1, self._total + 1)
                    if d != self._id
                ],
            )
            for u in uuids
        ]


class FakeLeader(Leader):
    def __init__(self, leader=True):
        self.leader = leader

    def is_leader(self):
        return self.leader


class MockPruner:
    def __init__(self):
        self.cache = None
        self.count = 0
        self.pruned = 0
        self._lock = threading.Lock()

    def prune_nonces(self):
        pruned = self.cache.prune_nonces()
        with self._lock:
            self.count += 1
            self.pruned += pruned
        return pruned

    def result(self):
        with self._lock:
            return self.count, self.pruned


def make_cosigners(n=3):
    return [FakeCosigner(i, total=n) for i in range(1, n + 1)]


def run_in_background(cache):
    stop = threading.Event()
    thread = threading.Thread(target=cache.start, args=(stop,), daemon=True)
    thread.start()
    return stop, thread


def test_nonce_cache_add_and_delete():
    nc = NonceCache()
    ids = [uuid.uuid4() for _ in range(10)]
    for u in ids:
        nc.add(CachedNonce(uuid=u, expiration=time.monotonic() + 1))
    nc.delete(len(nc) - 1)
    nc.delete(0)
    assert len(nc) == 8
    assert [n.uuid for n in nc.nonces] == ids[1:9]


def test_moving_average():
    ma = MovingAverage(12.0)

    ma.add(3.0, 500)
    assert len(ma.items) == 1
    assert ma.average() == 500.0

    ma.add(3.0, 100)
    assert len(ma.items) == 2
    assert ma.average() == 300.0

    ma.add(6.0, 600)
    assert len(ma.items) == 3
    assert ma.average() == 450.0

    # should kick out the first one
    ma.add(3.0, 500)
    assert len(ma.items) == 3
    assert ma.average() == 450.0

    # should kick out the second one
    ma.add(6.0, 500)
    assert len(ma.items) == 3
    assert ma.average() == 540.0

    for _ in range(5):
        ma.add(2.5, 1000)

    assert len(ma.items) == 5
    assert ma.average() == 1000.0


def test_clear_nonces():
    cosigners = make_cosigners(3)
    cnc = CosignerNonceCache(cosigners, FakeLeader(), threshold=2)

    for _ in range(10):
        # drops below threshold when cosigner 1 is removed
        cnc.cache.add(CachedNonce(
            uuid=uuid.uuid4(),
            expiration=time.monotonic() + 1,
            nonces=[CosignerNoncesRel(cosigners[0]), CosignerNoncesRel(cosigners[1])],
        ))
        # stays above threshold without cosigner 1
        cnc.cache.add(CachedNonce(
            uuid=uuid.uuid4(),
            expiration=time.monotonic() + 1,
            nonces=[
                CosignerNoncesRel(cosigners[0]),
                CosignerNoncesRel(cosigners[1]),
                CosignerNoncesRel(cosigners[2]),
            ],
        ))

    assert len(cnc.cache) == 20

    cnc.clear_nonces(cosigners[0])

    assert len(cnc.cache) == 10
    for n in cnc.cache.nonces:
        assert len(n.nonces) == 2
        members = [rel.cosigner for rel in n.nonces]
        assert cosigners[1] in members
        assert cosigners[2] in members

    cnc.clear_nonces(cosigners[1])

    assert len(cnc.cache) == 0


PRUNE_UUIDS = [
    uuid.UUID("d6ef381f-6234-432d-b204-d8957fe60360"),
    uuid.UUID("cdc3673d-7946-459a-b458-cbbde0eecd04"),
    uuid.UUID("38c6a201-0b8b-46eb-ab69-c7b2716d408e"),
    uuid.UUID("5caf5ab2-d460-430f-87fa-8ed2983ae8fb"),
]


@pytest.mark.parametrize(
    "offsets, expected",
    [
        ([], []),
        ([1, 2, 3, 4], PRUNE_UUIDS),
        ([-1, 2, 3, 4], PRUNE_UUIDS[1:]),
        ([-1, -1, -1, 4], PRUNE_UUIDS[3:]),
        ([-1, -1, -1, -1], []),
    ],
    ids=[
        "no nonces",
        "no expired nonces",
        "first nonce is expired",
        "all but last nonce expired",
        "all nonces expired",
    ],
)
def test_nonce_cache_prune(offsets, expected):
    now = time.monotonic()
    nc = NonceCache([
        CachedNonce(uuid=u, expiration=now + off)
        for u, off in zip(PRUNE_UUIDS, offsets)
    ])

    pruned = nc.prune_nonces()

    assert pruned == len(offsets) - len(expected)
    assert [n.uuid for n in nc.nonces] == expected


def test_target_minimum_and_demand():
    cnc = CosignerNonceCache(make_cosigners(), FakeLeader(), 0.09, 0.1, 0.5, 2)
    assert cnc.target(300) == 1
    assert cnc.target(0) == 1

    cnc = CosignerNonceCache(make_cosigners(), FakeLeader(), 3.0, 4.0, 10.0, 2)
    assert cnc.target(0) == 68
    assert cnc.target(6000) == 850


def test_load_n_and_get_nonces():
    cosigners = make_cosigners(3)
    cnc = CosignerNonceCache(cosigners, FakeLeader(), threshold=2)
    cnc.load_n(5)
    assert len(cnc.cache) == 5
    first = cnc.cache.nonces[0].uuid

    got = cnc.get_nonces([cosigners[0], cosigners[1]])

    assert got.uuid == first
    assert [(n.source_id, n.destination_id) for n in got.nonces] == [(1, 2), (1, 3), (2, 1), (2, 3)]
    assert len(cnc.cache) == 4


def test_load_n_skips_sets_below_threshold():
    cosigners = [FakeCosigner(1), FakeCosigner(2, fail=True), FakeCosigner(3, fail=True)]
    cnc = CosignerNonceCache(cosigners, FakeLeader(), threshold=2)
    cnc.load_n(4)
    assert len(cnc.cache) == 0


def test_load_n_with_failed_peer_above_threshold():
    cosigners = [FakeCosigner(1), FakeCosigner(2), FakeCosigner(3, fail=True)]
    cnc = CosignerNonceCache(cosigners, FakeLeader(), threshold=2)
    cnc.load_n(3)
    assert len(cnc.cache) == 3
    assert all([r.cosigner.id for r in n.nonces] == [1, 2] for n in cnc.cache.nonces)
    with pytest.raises(NoNoncesError, match=r"no nonces found involving cosigners \[1 3\]"):
        cnc.get_nonces([cosigners[0], cosigners[2]])


def test_get_nonces_empty_raises():
    cnc = CosignerNonceCache(make_cosigners(), FakeLeader(), threshold=2)
    with pytest.raises(NoNoncesError, match=r"\[1 2\]"):
        cnc.get_nonces(make_cosigners()[:2])


def test_reconcile_when_not_leader_only_prunes():
    mp = MockPruner()
    cnc = CosignerNonceCache(make_cosigners(), FakeLeader(False), threshold=2, pruner=mp)
    mp.cache = cnc.cache
    cnc.cache.add(CachedNonce(uuid=uuid.uuid4(), expiration=time.monotonic() - 1))
    cnc.reconcile()
    assert mp.result() == (1, 1)
    assert len(cnc.cache) == 0


def test_reconcile_as_leader_fills_to_target():
    cnc = CosignerNonceCache(make_cosigners(), FakeLeader(), 3.0, 4.0, 10.0, 2)
    cnc.reconcile()
    assert len(cnc.cache) == cnc.target(0)


def test_nonce_cache_demand():
    cosigners = make_cosigners(3)
    mp = MockPruner()
    cnc = CosignerNonceCache(
        cosigners, FakeLeader(), 0.5, 0.1, DEFAULT_NONCE_EXPIRATION, 2, mp
    )
    mp.cache = cnc.cache

    cnc.load_n(50)
    stop, thread = run_in_background(cnc)
    try:
        for _ in range(300):
            cnc.get_nonces([cosigners[0], cosigners[1]])
            time.sleep(0.01)
            assert len(cnc.cache) > 0
        size = len(cnc.cache)
    finally:
        stop.set()
        thread.join(2)

    assert size > 0
    assert size <= cnc.target(cnc.moving_average.average())
    count, pruned = mp.result()
    assert count > 0
    assert pruned == 0


def test_nonce_cache_expiration():
    cosigners = make_cosigners(3)
    mp = MockPruner()
    expiration = 1.0
    interval = expiration / 5
    cnc = CosignerNonceCache(cosigners, FakeLeader(), interval, 0.05, expiration, 2, mp)
    mp.cache = cnc.cache

    load_n = 100
    cnc.load_n(load_n)
    stop, thread = run_in_background(cnc)
    try:
        time.sleep(expiration / 2)
        cnc.load_n(load_n)
        time.sleep(expiration / 2 + interval)
        count, pruned = mp.result()
    finally:
        stop.set()
        thread.join(2)

    assert count >= 5
    assert pruned == load_n
    assert len(cnc.cache) <= load_n


def test_nonce_cache_demand_slow():
    cosigners = make_cosigners(3)
    cnc = CosignerNonceCache(cosigners, FakeLeader(), 0.09, 0.1, 0.5, 2)
    stop, thread = run_in_background(cnc)
    try:
        for _ in range(10):
            time.sleep(0.2)
            assert len(cnc.cache) > 0
            got = cnc.get_nonces([cosigners[0], cosigners[1]])
            assert len(got.nonces) == 4
    finally:
        stop.set()
        thread.join(2)

    assert len(cnc.cache) <= cnc.target(300)