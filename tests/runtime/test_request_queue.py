from learnloop.runtime.memory.request_queue import QueueEvent, RequestQueue, RequestStatus


def test_pop_order_follows_priority_then_arrival():
    queue = RequestQueue()
    low = queue.push("low", priority=1)
    high = queue.push("high", priority=5)
    mid = queue.push("mid", priority=3)
    low_later = queue.push("low later")

    order = [queue.pop().id for _ in range(4)]

    assert order == [high, mid, low, low_later]
    assert queue.pop() is None


def test_push_defaults_and_status_counts():
    queue = RequestQueue()
    first = queue.push("hello", metadata={"tags": ["greeting"]})
    queue.push("world")

    request = queue.get(first)
    assert request.priority == 1
    assert request.status is RequestStatus.pending
    assert request.tags == ["greeting"]
    assert request.id.startswith("req_")

    popped = queue.pop()
    assert popped.status is RequestStatus.processing
    assert queue.get_status() == {"pending": 1, "processing": 1, "completed": 0, "failed": 0, "in_flight": 1}

    assert queue.complete(popped.id, "hi") is True
    second = queue.pop()
    assert queue.fail(second.id, "boom") is True
    assert queue.get_status() == {"pending": 0, "processing": 0, "completed": 1, "failed": 1, "in_flight": 0}
    assert queue.get(popped.id).response == "hi"
    assert queue.get(second.id).error == "boom"


def test_complete_and_fail_unknown_or_finished_ids():
    queue = RequestQueue()
    request_id = queue.push("x")
    queue.pop()
    events = []
    queue.on(QueueEvent.completed, lambda r: events.append(r.id))

    assert queue.complete("req_missing", "nope") is False
    assert queue.fail("req_missing", "nope") is False
    assert queue.complete(request_id, "done") is True
    assert queue.complete(request_id, "again") is False
    assert queue.fail(request_id, "late") is False
    assert events == [request_id]
    assert queue.get(request_id).response == "done"


def test_observers_are_isolated_from_each_other():
    queue = RequestQueue()
    seen = []

    def broken(request):
        raise RuntimeError("observer bug")

    queue.on("new", broken)
    queue.on("new", lambda r: seen.append(r.prompt))

    queue.push("still delivered")

    assert seen == ["still delivered"]


def test_once_and_unsubscribe():
    queue = RequestQueue()
    once_calls, all_calls = [], []
    queue.on(QueueEvent.new, lambda r: once_calls.append(r.id), once=True)
    unsubscribe = queue.on(QueueEvent.new, lambda r: all_calls.append(r.id))

    first = queue.push("a")
    second = queue.push("b")
    unsubscribe()
    queue.push("c")

    assert once_calls == [first]
    assert all_calls == [first, second]


def test_failed_event_carries_error_text():
    queue = RequestQueue()
    failures = []
    queue.on(QueueEvent.failed, failures.append)
    request_id = queue.push("x")
    queue.pop()

    queue.fail(request_id, "pipeline exploded")

    assert failures[0].id == request_id
    assert failures[0].status is RequestStatus.failed
    assert failures[0].response == "pipeline exploded"
