import threading

from horcrux.cosigner import Cosigner, Leader
from horcrux.health import CosignerHealth


class FakeRemote(Cosigner):
    remote = True

    def __init__(self, cosigner_id, fail=False):
        self._id = cosigner_id
        self.fail = fail
        self.pings = 0

    @property
    def id(self):
        return self._id

    @property
    def address(self):
        return f"tcp://signer-{self._id}:2222"

    def get_nonces(self, uuids):
        return []

    def ping(self, timeout):
        self.pings += 1
        if self.fail:
            raise ConnectionError("unreachable")


class FakeLocal(FakeRemote):
    remote = False


class FakeLeader(Leader):
    def __init__(self, leading=True):
        self.leading = leading

    def is_leader(self):
        return self.leading


def test_cosigner_health_get_fastest():
    ch = CosignerHealth(
        [FakeRemote(2), FakeRemote(3), FakeRemote(4), FakeRemote(5)],
        FakeLeader(),
    )
    ch.rtt = {2: 200, 3: -1, 4: 100, 5: 300}
    fastest = ch.get_fastest()
    assert len(fastest) == 4
    assert fastest[0].id == 4
    assert fastest[1].id == 2
    assert [c.id for c in fastest] == [4, 2, 5, 3]


def test_unknown_rtt_sorted_last():
    ch = CosignerHealth([FakeRemote(1), FakeRemote(2)], FakeLeader())
    ch.rtt = {2: 50}
    assert [c.id for c in ch.get_fastest()] == [2, 1]


def test_mark_unhealthy():
    cosigners = [FakeRemote(1), FakeRemote(2)]
    ch = CosignerHealth(cosigners, FakeLeader())
    ch.rtt = {1: 10, 2: 20}
    ch.mark_unhealthy(cosigners[0])
    assert ch.rtt[1] == -1
    assert [c.id for c in ch.get_fastest()] == [2, 1]


def test_reconcile_records_rtt():
    ok, bad, local = FakeRemote(1), FakeRemote(2, fail=True), FakeLocal(3)
    ch = CosignerHealth([ok, bad, local], FakeLeader())
    ch.reconcile()
    assert ch.rtt[1] >= 0
    assert ch.rtt[2] == -1
    assert 3 not in ch.rtt
    assert local.pings == 0
    assert [c.id for c in ch.get_fastest()][0] == 1


def test_reconcile_skipped_when_not_leader():
    remote = FakeRemote(1)
    ch = CosignerHealth([remote], FakeLeader(leading=False))
    ch.reconcile()
    assert ch.rtt == {}
    assert remote.pings == 0


def test_start_stops_on_event():
    remote = FakeRemote(1)
    ch = CosignerHealth([remote], FakeLeader())
    stop = threading.Event()
    stop.set()
    ch.start(stop)
    assert remote.pings == 1
    assert ch.rtt[1] >= 0