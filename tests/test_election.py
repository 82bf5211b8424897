"""
Tests for lease-based leader election.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from flashgate.coordination.election import ElectionTiming, LeaderElector
from flashgate.engine.errors import LeaderElectionError
from flashgate.observability.metrics import metrics

NAMESPACE = "flashgate"
LEASE = "flashgate-daemon-lease"
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


def make_elector(lock, identity, clock, sleep=None, timing=None):
    kwargs = {"sleep": sleep} if sleep is not None else {}
    return LeaderElector(
        lock,
        namespace=NAMESPACE,
        name=LEASE,
        identity=identity,
        timing=timing or ElectionTiming(),
        clock=clock,
        **kwargs,
    )


def test_empty_identity_is_rejected(lease_lock):
    with pytest.raises(LeaderElectionError, match="identity"):
        make_elector(lease_lock, "", FakeClock())


@pytest.mark.parametrize(
    "timing",
    [
        ElectionTiming(lease_duration=15, renew_deadline=15, retry_period=5),
        ElectionTiming(lease_duration=60, renew_deadline=5, retry_period=5),
        ElectionTiming(lease_duration=60, renew_deadline=15, retry_period=0),
    ],
)
def test_invalid_timing_is_rejected(lease_lock, timing):
    with pytest.raises(LeaderElectionError):
        make_elector(lease_lock, "node-a", FakeClock(), timing=timing)


@pytest.mark.asyncio
async def test_first_candidate_creates_lease(lease_lock, clock):
    elector = make_elector(lease_lock, "node-a", clock)

    assert await elector.try_acquire_or_renew() is True

    lease = lease_lock.leases[(NAMESPACE, LEASE)]
    assert lease.holder_identity == "node-a"
    assert lease.lease_duration_seconds == 60
    assert lease.acquire_time == T0
    assert lease.lease_transitions == 0
    assert elector.is_leader()


@pytest.mark.asyncio
async def test_held_lease_blocks_other_candidates_until_expiry(lease_lock, clock):
    leader = make_elector(lease_lock, "node-a", clock)
    other = make_elector(lease_lock, "node-b", clock)
    await leader.try_acquire_or_renew()

    clock.advance(30)
    assert await other.try_acquire_or_renew() is False
    assert not other.is_leader()

    clock.advance(31)
    assert await other.try_acquire_or_renew() is True

    lease = lease_lock.leases[(NAMESPACE, LEASE)]
    assert lease.holder_identity == "node-b"
    assert lease.lease_transitions == 1
    assert lease.acquire_time == clock.now


@pytest.mark.asyncio
async def test_renewal_extends_lease(lease_lock, clock):
    leader = make_elector(lease_lock, "node-a", clock)
    other = make_elector(lease_lock, "node-b", clock)
    await leader.try_acquire_or_renew()

    clock.advance(50)
    assert await leader.try_acquire_or_renew() is True
    clock.advance(50)
    assert await other.try_acquire_or_renew() is False

    lease = lease_lock.leases[(NAMESPACE, LEASE)]
    assert lease.renew_time == T0 + timedelta(seconds=50)
    assert lease.acquire_time == T0
    assert lease.lease_transitions == 0


@pytest.mark.asyncio
async def test_stale_write_loses_compare_and_swap(lease_lock, clock):
    leader = make_elector(lease_lock, "node-a", clock)
    await leader.try_acquire_or_renew()

    stale = lease_lock.leases[(NAMESPACE, LEASE)].model_copy()
    fresh = stale.model_copy(update={"renew_time": clock.now})
    assert await lease_lock.update(fresh) is True
    assert await lease_lock.update(stale.model_copy(update={"holder_identity": "node-b"})) is False
    assert lease_lock.leases[(NAMESPACE, LEASE)].holder_identity == "node-a"


@pytest.mark.asyncio
async def test_release_lets_next_candidate_in_immediately(lease_lock, clock):
    leader = make_elector(lease_lock, "node-a", clock)
    other = make_elector(lease_lock, "node-b", clock)
    await leader.try_acquire_or_renew()

    assert await leader.release() is True
    assert lease_lock.leases[(NAMESPACE, LEASE)].holder_identity == ""
    assert not leader.is_leader()

    assert await other.try_acquire_or_renew() is True
    assert lease_lock.leases[(NAMESPACE, LEASE)].lease_transitions == 1


@pytest.mark.asyncio
async def test_release_by_non_holder_is_a_no_op(lease_lock, clock):
    leader = make_elector(lease_lock, "node-a", clock)
    other = make_elector(lease_lock, "node-b", clock)
    await leader.try_acquire_or_renew()

    assert await other.release() is False
    assert lease_lock.leases[(NAMESPACE, LEASE)].holder_identity == "node-a"


@pytest.mark.asyncio
async def test_acquire_retries_until_lease_expires(lease_lock, clock):
    """Blocked candidate keeps polling every retry period."""
    leader = make_elector(lease_lock, "node-a", clock)
    await leader.try_acquire_or_renew()

    async def advancing_sleep(delay):
        clock.advance(delay)
        await asyncio.sleep(0)

    other = make_elector(lease_lock, "node-b", clock, sleep=advancing_sleep)
    await other.acquire()

    assert other.is_leader()
    assert clock.now >= T0 + timedelta(seconds=60)
    assert metrics.counter_value("lease.acquisitions") == 1


@pytest.mark.asyncio
async def test_acquire_survives_store_errors(lease_lock, clock):
    attempts = 0

    async def recovering_sleep(delay):
        nonlocal attempts
        attempts += 1
        if attempts == 2:
            lease_lock.fail_gets = False
        await asyncio.sleep(0)

    lease_lock.fail_gets = True
    elector = make_elector(lease_lock, "node-a", clock, sleep=recovering_sleep)
    await elector.acquire()

    assert elector.is_leader()
    assert attempts == 2


@pytest.mark.asyncio
async def test_failed_renewal_signals_lost_leadership(lease_lock, clock, recorded_sleep):
    elector = make_elector(lease_lock, "node-a", clock, sleep=recorded_sleep)
    await elector.try_acquire_or_renew()

    lease_lock.fail_gets = True
    lost = asyncio.Event()
    await asyncio.wait_for(elector.renew_loop(lost), timeout=5)

    assert lost.is_set()
    assert metrics.counter_value("lease.lost") == 1
    # one sleep before renewing, then a retry period between each of the 3 attempts
    assert recorded_sleep.delays == [5, 5, 5]


@pytest.mark.asyncio
async def test_renewal_taken_over_by_other_node_is_lost(lease_lock, clock, recorded_sleep):
    leader = make_elector(lease_lock, "node-a", clock, sleep=recorded_sleep)
    other = make_elector(lease_lock, "node-b", clock)
    await leader.try_acquire_or_renew()

    clock.advance(61)
    await other.try_acquire_or_renew()

    assert await leader.renew() is False
