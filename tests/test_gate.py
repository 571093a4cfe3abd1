"""
Dependency gate and boot state machine tests
"""

import threading
import time

import pytest

from rig.errors import BootFailed
from rig.gate import BootSequence, BootState, DependencyGate


@pytest.fixture
def gate():
    return DependencyGate()


def _waiter(gate, names, results):
    def run():
        results.append(gate.wait_until_satisfied(names))
    t = threading.Thread(target=run, daemon=True)
    t.start()
    return t


class TestWaitUntilSatisfied:

    @pytest.mark.parametrize("order", [("A", "B"), ("B", "A")])
    def test_returns_only_after_both_facts(self, gate, order):
        results = []
        t = _waiter(gate, ["A", "B"], results)

        gate.satisfy(order[0])
        t.join(0.1)
        assert t.is_alive()
        assert results == []

        gate.satisfy(order[1])
        t.join(2)
        assert not t.is_alive()
        assert results == [True]

    def test_returns_immediately_when_already_satisfied(self, gate):
        gate.satisfy("A")
        gate.satisfy("B")
        start = time.monotonic()
        assert gate.wait_until_satisfied(["A", "B"]) is True
        assert time.monotonic() - start < 0.5

    def test_unsatisfied_requirements(self, gate):
        gate.register_requirement(["A", "B"])
        gate.satisfy("A")
        assert gate.unsatisfied == frozenset({"B"})

    def test_timeout_returns_false(self, gate):
        assert gate.wait_until_satisfied(["never"], timeout=0.05) is False

    def test_satisfy_is_idempotent(self, gate):
        calls = []
        gate.on_satisfied(["A"], lambda: calls.append(1))
        gate.satisfy("A")
        gate.satisfy("A")
        assert calls == [1]
        assert gate.satisfied == frozenset({"A"})


class TestOnSatisfied:

    def test_fires_once_when_all_facts_true(self, gate):
        calls = []
        gate.on_satisfied(["A", "B"], lambda: calls.append("ab"))
        gate.satisfy("A")
        assert calls == []
        gate.satisfy("B")
        gate.satisfy("C")
        assert calls == ["ab"]

    def test_fires_immediately_if_already_true(self, gate):
        gate.satisfy("A")
        calls = []
        gate.on_satisfied(["A"], lambda: calls.append("a"))
        assert calls == ["a"]

    def test_same_key_replaces_pending_callback(self, gate):
        calls = []
        gate.on_satisfied(["A"], lambda: calls.append("first"), key="k")
        gate.on_satisfied(["A"], lambda: calls.append("second"), key="k")
        gate.satisfy("A")
        assert calls == ["second"]

    def test_callback_error_reaches_satisfier(self, gate):
        def boom():
            raise RuntimeError("boom")
        gate.on_satisfied(["A"], boom)
        with pytest.raises(RuntimeError):
            gate.satisfy("A")
        # the fact stays satisfied
        assert gate.is_satisfied(["A"])


class TestBootSequence:

    def test_happy_path(self):
        boot = BootSequence()
        ready = []
        boot.on_ready(lambda: ready.append(True))
        assert boot.begin() is True
        boot.advance(BootState.BUILDING_TOPOLOGY)
        boot.advance(BootState.READY)
        assert boot.state is BootState.READY
        assert ready == [True]
        assert boot.wait() is True

    def test_only_first_begin_claims(self):
        boot = BootSequence()
        assert boot.begin() is True
        assert boot.begin() is False

    def test_invalid_transition(self):
        boot = BootSequence()
        with pytest.raises(RuntimeError):
            boot.advance(BootState.READY)

    def test_failure_wakes_waiters(self):
        boot = BootSequence()
        boot.begin()
        errors = []

        def run():
            try:
                boot.wait()
            except BootFailed as e:
                errors.append(e)

        t = threading.Thread(target=run, daemon=True)
        t.start()
        boot.fail(ValueError("no engine"))
        t.join(2)
        assert not t.is_alive()
        assert isinstance(errors[0].cause, ValueError)

    def test_wait_timeout_while_booting(self):
        boot = BootSequence()
        boot.begin()
        assert boot.wait(timeout=0.05) is False

    def test_on_ready_after_ready_runs_now(self):
        boot = BootSequence()
        boot.begin()
        boot.advance(BootState.BUILDING_TOPOLOGY)
        boot.advance(BootState.READY)
        ready = []
        boot.on_ready(lambda: ready.append(1))
        assert ready == [1]
