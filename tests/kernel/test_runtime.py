"""Tests for RuntimeContext lifecycle."""

from pos_kernel.db.engine import build_engine
from pos_kernel.runtime import RuntimeContext


class TestDispose:
    def test_callbacks_run_before_engine_disposed(self):
        runtime = RuntimeContext.from_engine(build_engine("sqlite://"))
        calls = []
        runtime.on_dispose(lambda: calls.append("first"))
        runtime.on_dispose(lambda: calls.append("second"))

        runtime.dispose()
        runtime.dispose()

        assert calls == ["second", "first"]

    def test_failing_callback_does_not_block_others(self, captured_logs):
        runtime = RuntimeContext.from_engine(build_engine("sqlite://"))
        calls = []
        runtime.on_dispose(lambda: calls.append("ran"))

        def broken():
            raise RuntimeError("already closed")

        runtime.on_dispose(broken)
        runtime.dispose()

        assert calls == ["ran"]
        assert any(r["message"] == "dispose_callback_failed" for r in captured_logs())
