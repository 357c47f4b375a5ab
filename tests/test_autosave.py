import asyncio

from storyplay.modules.session.autosave import DebouncedTask, SerializedWriter


def test_debounced_task_coalesces_burst_into_one_run() -> None:
    calls: list[int] = []

    async def _action() -> None:
        calls.append(1)

    async def _run():
        task = DebouncedTask(_action, 0.2)
        for _ in range(5):
            task.schedule()
            await asyncio.sleep(0.01)
        assert task.pending is True
        await asyncio.sleep(0.4)
        await task.drain()
        return task

    task = asyncio.run(_run())
    assert calls == [1]
    assert task.pending is False
    assert task.running is False


def test_debounced_task_cancel_and_stop() -> None:
    calls: list[str] = []

    async def _action() -> None:
        await asyncio.sleep(0.2)
        calls.append("run")

    async def _run():
        task = DebouncedTask(_action, 0.05)
        task.schedule()
        task.cancel()
        await asyncio.sleep(0.1)
        assert calls == []
        task.schedule()
        await asyncio.sleep(0.1)
        assert task.running is True
        task.schedule()
        await task.stop()
        assert calls == ["run"]
        assert task.pending is False
        await asyncio.sleep(0.1)

    asyncio.run(_run())
    assert calls == ["run"]


def test_debounced_task_logs_and_survives_failures() -> None:
    attempts: list[int] = []

    async def _action() -> None:
        attempts.append(1)
        raise RuntimeError("store offline")

    async def _run():
        task = DebouncedTask(_action, 0.0)
        task.schedule()
        await asyncio.sleep(0.02)
        await task.drain()
        task.schedule()
        await asyncio.sleep(0.02)
        await task.drain()

    asyncio.run(_run())
    assert len(attempts) == 2


def test_serialized_writer_never_overlaps_writes() -> None:
    active = {"now": 0, "max": 0}
    order: list[str] = []

    def _writer(name: str):
        async def _write() -> str:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
            await asyncio.sleep(0.01)
            order.append(name)
            active["now"] -= 1
            return name

        return _write

    async def _run():
        writer = SerializedWriter()
        first = asyncio.create_task(writer.run(_writer("a")))
        await asyncio.sleep(0)
        assert writer.in_flight is True
        results = await asyncio.gather(first, writer.run(_writer("b")), writer.run(_writer("c")))
        assert writer.in_flight is False
        return results

    results = asyncio.run(_run())
    assert results == ["a", "b", "c"]
    assert order == ["a", "b", "c"]
    assert active["max"] == 1
