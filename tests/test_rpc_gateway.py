import random

import pytest

from seatbook.booking_coordinator import BookingCoordinator
from seatbook.booking_types import LedgerKey, SeatOutcome, SeatRef, SeatState
from seatbook.exceptions import UnknownOperationError, UnknownSeatError
from seatbook.rpc_gateway import RpcOperation
from tests.sim_helpers import Task

KEY = LedgerKey("m1", "19:30")


def seat(seat_id):
    return SeatRef(KEY, seat_id)


def params(seat_id, **extra):
    return {"movie_id": KEY.movie_id, "showtime": KEY.showtime, "seat_id": seat_id, **extra}


@pytest.fixture
def cluster(env, quiet_settings):
    return BookingCoordinator(
        env,
        settings=quiet_settings,
        rng=random.Random(1),
        latency_fn=lambda: 0.1,
        replication_delay_fn=lambda: 0.05,
    )


def book(gateway, seat_id, node_id="node-1", timestamp=1):
    return gateway.call(
        RpcOperation.BOOK_SEAT,
        params(seat_id, node_id=node_id, timestamp=timestamp),
    )


def test_every_call_pays_latency(env, run_sim, cluster):
    available = run_sim(
        lambda: cluster.gateway.call(RpcOperation.CHECK_AVAILABILITY, params("A1"))
    )
    assert available is True
    assert cluster.gateway.calls_served == 1


def test_latency_is_virtual_time(env, cluster):
    task = Task(env, lambda: cluster.gateway.call("checkSeatAvailability", params("A1")))
    env.run(until=0.05)
    assert not task.done
    env.run(until=1.0)
    assert task.done and task.result is True


def test_unknown_operation_is_a_hard_error(run_sim, cluster):
    async def call_unknown():
        try:
            await cluster.gateway.call("refundSeat", params("A1"))
        except UnknownOperationError as exc:
            return exc

    error = run_sim(call_unknown)
    assert isinstance(error, UnknownOperationError)
    assert error.operation == "refundSeat"


def test_unknown_seat_is_not_available(run_sim, cluster):
    result = run_sim(
        lambda: cluster.gateway.call(RpcOperation.CHECK_AVAILABILITY, params("Z99"))
    )
    assert result is False


def test_book_seat_commits_and_replicates(run_sim, cluster):
    reply = run_sim(lambda: book(cluster.gateway, "B4"))

    assert reply.outcome == SeatOutcome.BOOKED
    assert reply.version == 1
    assert reply.replication == {"replica-1": True, "replica-2": True}
    assert cluster.primary.state_of(seat("B4")) == SeatState.BOOKED
    assert cluster.mutex.queued_count() == 0


def test_booked_seat_is_rejected_before_queueing(run_sim, cluster):
    cluster.primary.set_state(seat("A1"), SeatState.BOOKED)

    reply = run_sim(lambda: book(cluster.gateway, "A1"))

    assert reply.outcome == SeatOutcome.PRECONDITION_FAILURE
    assert cluster.mutex.pending(str(seat("A1"))) == []


def test_held_mutex_is_contention(run_sim, cluster):
    cluster.mutex.request(str(seat("A1")), "other-node", 1)

    reply = run_sim(lambda: book(cluster.gateway, "A1", "node-1", 5))

    assert reply.outcome == SeatOutcome.CONTENTION_FAILURE
    assert not reply.success
    assert [r.node_id for r in cluster.mutex.pending(str(seat("A1")))] == ["other-node"]
    assert cluster.primary.state_of(seat("A1")) == SeatState.AVAILABLE
    assert cluster.primary.version == 0


def test_concurrent_bookings_of_one_seat(env, cluster):
    first = Task(env, lambda: book(cluster.gateway, "C3", "node-1", 1))
    second = Task(env, lambda: book(cluster.gateway, "C3", "node-2", 1))
    env.run(until=10)

    outcomes = sorted(t.result.outcome.value for t in (first, second))
    assert outcomes == ["booked", "precondition_failure"]
    assert cluster.primary.version == 1


def test_update_state_overwrites_primary_only(run_sim, cluster):
    run_sim(lambda: book(cluster.gateway, "A2"))

    ok = run_sim(
        lambda: cluster.gateway.call(
            RpcOperation.UPDATE_STATE, params("A2", state="available")
        )
    )

    assert ok is True
    assert cluster.primary.state_of(seat("A2")) == SeatState.AVAILABLE
    assert all(r.state_of(seat("A2")) == SeatState.BOOKED for r in cluster.replicas)


def test_update_state_on_unknown_seat(run_sim, cluster):
    async def reset_unknown():
        try:
            await cluster.gateway.call(
                RpcOperation.UPDATE_STATE, params("Q1", state="booked")
            )
        except UnknownSeatError as exc:
            return exc

    assert run_sim(reset_unknown).seat_id == "Q1"


def test_same_seat_of_another_showtime_is_its_own_resource(run_sim, cluster):
    run_sim(lambda: book(cluster.gateway, "B4"))
    cluster.mutex.request(str(seat("A1")), "other-node", 1)
    late_show = {"movie_id": "m1", "showtime": "21:00", "node_id": "node-1", "timestamp": 3}

    b4 = run_sim(
        lambda: cluster.gateway.call(RpcOperation.BOOK_SEAT, {**late_show, "seat_id": "B4"})
    )
    a1 = run_sim(
        lambda: cluster.gateway.call(RpcOperation.BOOK_SEAT, {**late_show, "seat_id": "A1"})
    )

    assert b4.outcome == a1.outcome == SeatOutcome.BOOKED
    assert (b4.version, a1.version) == (2, 3)
    assert cluster.mutex.holder(str(seat("A1"))) == "other-node"
