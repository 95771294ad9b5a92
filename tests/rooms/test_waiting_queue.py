from datetime import timedelta

from app.domains.rooms.queue import WaitingQueue
from app.shared.utils.time import utcnow


def test_priority_then_request_time():
    t0 = utcnow()
    queue = WaitingQueue()
    queue.add("A", priority=0, requested_at=t0)
    queue.add("B", priority=1, requested_at=t0 + timedelta(seconds=1))
    queue.add("C", priority=1, requested_at=t0)

    assert queue.user_ids() == ["C", "B", "A"]
    assert queue.position_of("A") == 3
    assert queue.peek().user_id == "C"


def test_add_is_idempotent():
    t0 = utcnow()
    queue = WaitingQueue()
    assert queue.add("A", requested_at=t0) is True
    assert queue.add("A", priority=5, requested_at=t0 + timedelta(minutes=1)) is False

    assert len(queue) == 1
    assert queue.get("A").priority == 0
    assert queue.get("A").requested_at == t0


def test_remove_and_pop():
    queue = WaitingQueue()
    queue.add("A")
    queue.add("B", priority=2)

    assert queue.pop().user_id == "B"
    assert queue.remove("A") is True
    assert queue.remove("A") is False
    assert queue.pop() is None
    assert "A" not in queue
