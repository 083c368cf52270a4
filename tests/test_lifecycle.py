# tests/test_lifecycle.py
"""Tests for the lifecycle manager."""

import pytest

from mindbreakers.core.lifecycle import (
    LifecycleManager,
    get_lifecycle_manager,
    reset_lifecycle_manager,
)


class Recorder:
    def __init__(self, name: str, log: list[str]) -> None:
        self.name = name
        self.log = log

    def start(self) -> None:
        self.log.append(f"start:{self.name}")

    async def shutdown(self) -> None:
        self.log.append(f"stop:{self.name}")


class AsyncClientLike:
    def __init__(self, log: list[str]) -> None:
        self.log = log

    async def aclose(self) -> None:
        self.log.append("aclose")


class TestLifecycleManager:
    @pytest.mark.asyncio
    async def test_start_in_order_stop_in_reverse(self):
        log: list[str] = []
        lm = LifecycleManager()
        lm.register("a", Recorder("a", log))
        lm.register("b", Recorder("b", log))

        await lm.startup()
        await lm.shutdown()

        assert log == ["start:a", "start:b", "stop:b", "stop:a"]

    @pytest.mark.asyncio
    async def test_aclose_hook(self):
        log: list[str] = []
        lm = LifecycleManager()
        lm.register("http", AsyncClientLike(log))

        await lm.startup()
        await lm.shutdown()

        assert log == ["aclose"]

    @pytest.mark.asyncio
    async def test_startup_is_idempotent(self):
        log: list[str] = []
        lm = LifecycleManager()
        lm.register("a", Recorder("a", log))

        await lm.startup()
        await lm.startup()

        assert log == ["start:a"]
        assert lm.is_started
        assert lm.component_count == 1

    @pytest.mark.asyncio
    async def test_failing_shutdown_does_not_stop_others(self):
        log: list[str] = []

        class Broken:
            def shutdown(self) -> None:
                raise RuntimeError("boom")

        lm = LifecycleManager()
        lm.register("a", Recorder("a", log))
        lm.register("broken", Broken())

        await lm.startup()
        await lm.shutdown()

        assert log == ["start:a", "stop:a"]
        assert not lm.is_started

    @pytest.mark.asyncio
    async def test_shutdown_before_startup_is_noop(self):
        log: list[str] = []
        lm = LifecycleManager()
        lm.register("a", Recorder("a", log))

        await lm.shutdown()

        assert log == []


def test_singleton(reset_lifecycle):
    first = get_lifecycle_manager()

    assert get_lifecycle_manager() is first
    reset_lifecycle_manager()
    assert get_lifecycle_manager() is not first
