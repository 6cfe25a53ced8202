"""
Unit tests for the event dispatcher: registration, ordering and handler
failure isolation.
"""
import asyncio

import pytest

from hxa_connect.events import ERROR, EventDispatcher


# ─────────────────────────────────────────────
# Registration
# ─────────────────────────────────────────────

class TestRegistration:
    def test_handlers_fire_in_registration_order(self):
        d = EventDispatcher()
        calls = []
        d.on("thread_message", lambda p: calls.append(("a", p)))
        d.on("thread_message", lambda p: calls.append(("b", p)))
        d.emit("thread_message", 1)
        assert calls == [("a", 1), ("b", 1)]

    def test_duplicate_registration_fires_once(self):
        d = EventDispatcher()
        calls = []

        def handler(p):
            calls.append(p)

        d.on("pong", handler)
        d.on("pong", handler)
        assert d.handler_count("pong") == 1
        d.emit("pong", "x")
        assert calls == ["x"]

    def test_off_removes_handler(self):
        d = EventDispatcher()
        calls = []

        def handler(p):
            calls.append(p)

        d.on("pong", handler)
        d.off("pong", handler)
        d.emit("pong", None)
        assert calls == []
        assert d.handler_count("pong") == 0

    def test_off_unknown_is_noop(self):
        d = EventDispatcher()
        d.off("never_registered", print)
        d.on("pong", print)
        d.off("pong", len)
        assert d.handler_count("pong") == 1

    def test_types_are_independent(self):
        d = EventDispatcher()
        calls = []
        d.on("bot_online", calls.append)
        d.emit("bot_offline", "gone")
        assert calls == []

    def test_emit_without_handlers_is_noop(self):
        d = EventDispatcher()
        d.emit("thread_created", {"x": 1})
        d.emit(ERROR, RuntimeError("nobody listening"))

    def test_handler_may_unsubscribe_during_emit(self):
        d = EventDispatcher()
        calls = []

        def once(p):
            calls.append(("once", p))
            d.off("tick", once)

        d.on("tick", once)
        d.on("tick", lambda p: calls.append(("always", p)))
        d.emit("tick", 1)
        d.emit("tick", 2)
        assert calls == [("once", 1), ("always", 1), ("always", 2)]


# ─────────────────────────────────────────────
# Failure isolation
# ─────────────────────────────────────────────

class TestHandlerFailures:
    def test_failure_is_reemitted_as_error_and_others_still_run(self):
        d = EventDispatcher()
        errors, calls = [], []
        boom = RuntimeError("boom")

        def bad(p):
            raise boom

        d.on(ERROR, errors.append)
        d.on("thread_message", bad)
        d.on("thread_message", calls.append)
        d.emit("thread_message", "m")
        assert errors == [boom]
        assert calls == ["m"]

    def test_failing_error_handler_does_not_recurse(self):
        d = EventDispatcher()
        calls = []

        def bad_error_handler(err):
            calls.append(err)
            raise ValueError("error handler broke")

        d.on(ERROR, bad_error_handler)
        d.on("pong", lambda p: 1 / 0)
        d.emit("pong", None)  # must not raise
        assert len(calls) == 1
        assert isinstance(calls[0], ZeroDivisionError)

    def test_emit_error_reaches_error_handlers(self):
        d = EventDispatcher()
        seen = []
        d.on(ERROR, seen.append)
        d.emit_error("stringly error")
        assert seen == ["stringly error"]

    @pytest.mark.asyncio
    async def test_async_handler_failure_is_reported(self):
        d = EventDispatcher()
        errors = []

        async def bad(p):
            await asyncio.sleep(0)
            raise KeyError("async boom")

        d.on(ERROR, errors.append)
        d.on("thread_updated", bad)
        d.emit("thread_updated", None)
        for _ in range(10):
            if errors:
                break
            await asyncio.sleep(0.01)
        assert len(errors) == 1
        assert isinstance(errors[0], KeyError)

    @pytest.mark.asyncio
    async def test_async_handler_is_scheduled(self):
        d = EventDispatcher()
        done = asyncio.Event()

        async def handler(p):
            done.set()

        d.on("pong", handler)
        d.emit("pong", None)
        await asyncio.wait_for(done.wait(), timeout=1)
