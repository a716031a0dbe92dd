from __future__ import annotations

import threading

from events import EventChannel


def test_tasks_run_in_order_on_one_thread() -> None:
    channel = EventChannel(name="test-events")
    seen: list[tuple[int, str]] = []
    done = threading.Event()
    channel.start()

    for i in range(20):
        channel.post(lambda i=i: seen.append((i, threading.current_thread().name)))
    channel.post(done.set)

    assert done.wait(2.0)
    assert [i for i, _ in seen] == list(range(20))
    assert {name for _, name in seen} == {"test-events"}
    channel.close()
    channel.join()


def test_failing_task_does_not_stop_channel() -> None:
    channel = EventChannel()
    done = threading.Event()
    channel.start()

    def broken() -> None:
        raise RuntimeError("observer failed")

    channel.post(broken)
    channel.post(done.set)

    assert done.wait(2.0)
    channel.close()


def test_post_after_close_is_rejected() -> None:
    channel = EventChannel()
    channel.start()
    channel.close()
    channel.join()
    assert channel.post(lambda: None) is False
