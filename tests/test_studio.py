"""
Studio boot, topology and reset tests
"""

import threading

import pytest

from rig import LoopbackEngine, Studio, ar, fx_reverb
from rig.errors import BootFailed
from rig.events import RESET
from rig.gate import SERVER_READY, STUDIO_SETUP_COMPLETED, BootState


class CountingEngine(LoopbackEngine):
    def __init__(self):
        super().__init__()
        self.connects = 0

    def connect(self):
        self.connects += 1
        super().connect()


class RacingEngine(LoopbackEngine):
    """Runs ``race`` once, right before the first group made under ``inst_group``."""

    def __init__(self):
        super().__init__()
        self.inst_group = None
        self.race = None

    def create_group(self, position, target):
        if self.race is not None and target == self.inst_group():
            race, self.race = self.race, None
            race()
        return super().create_group(position, target)


class BrokenEngine(LoopbackEngine):
    def create_group(self, position, target):
        raise ConnectionError("engine did not acknowledge /g_new")


class TestBoot:

    def test_boot_completes(self, studio):
        assert studio.boot_state is BootState.UNBOOTED
        assert studio.boot() is True
        assert studio.is_booted()
        assert studio.gate.is_satisfied([SERVER_READY, STUDIO_SETUP_COMPLETED])

    def test_root_group_order(self, booted, engine):
        snap = booted.state.snapshot()
        root_children = engine.nodes[engine.root_group()].children
        assert root_children == [snap.inst_group, snap.fx_group,
                                 snap.mixer_group, snap.record_group]
        kinds = [c[1] for c in engine.calls if c[0] == "create_group"][:4]
        assert kinds == ["head", "after", "tail", "tail"]

    def test_second_boot_is_a_no_op(self, booted, engine):
        groups = len([c for c in engine.calls if c[0] == "create_group"])
        assert booted.boot() is True
        assert len([c for c in engine.calls if c[0] == "create_group"]) == groups

    def test_concurrent_boots_run_once(self, config):
        engine = CountingEngine()
        studio = Studio(engine, config)
        results = []
        threads = [threading.Thread(target=lambda: results.append(studio.boot(timeout=5)))
                   for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        assert results == [True] * 4
        assert engine.connects == 1
        assert [c[1] for c in engine.calls if c[0] == "create_group"].count("head") == 1
        studio.shutdown()

    def test_wait_until_booted_from_other_thread(self, studio):
        done = []
        t = threading.Thread(target=lambda: done.append(studio.wait_until_booted()))
        t.start()
        studio.boot()
        t.join(2)
        assert done == [True]

    def test_wait_times_out_while_unbooted(self, studio):
        assert studio.wait_until_booted(timeout=0.05) is False

    def test_failed_boot_is_permanent_and_visible(self, config):
        studio = Studio(BrokenEngine(), config)
        with pytest.raises(BootFailed) as err:
            studio.boot()
        assert isinstance(err.value.cause, ConnectionError)
        assert studio.boot_failed()
        assert not studio.is_booted()
        with pytest.raises(BootFailed):
            studio.wait_until_booted(timeout=1)
        # later attempts report the same failure instead of hanging
        with pytest.raises(BootFailed):
            studio.boot()

    def test_engine_ready_signal_without_boot_call(self, studio, engine):
        engine.connect()
        studio.server_ready()
        assert studio.is_booted()
        assert studio.state.snapshot().groups_ready

    def test_context_manager(self, engine, config):
        with Studio(engine, config) as studio:
            assert studio.is_booted()
        assert not engine.is_connected()


class TestReset:

    def test_reset_silences_but_keeps_registry(self, booted, engine, beep):
        beep()
        beep(freq=660)
        entry = booted.append_effect(beep, fx_reverb())
        group = booted.instrument(beep).group
        assert len(engine.synths(group)) == 2

        resets = []
        booted.on_event(RESET, lambda: resets.append(True))
        engine.reset()

        assert resets == [True]
        assert engine.synths(group) == []
        inst = booted.instrument("beep")
        assert inst.group == group
        assert inst.fx_chain == (entry,)
        assert entry.fx_id in engine.nodes

        node = beep()
        assert engine.nodes[node].parent == group
        assert engine.nodes[node].controls["out-bus"] == entry.bus

    def test_reset_skips_unassigned_instruments(self, studio, engine):
        studio.definst("early", [], ar("WhiteNoise"))
        engine.connect()
        engine.reset()
        assert [c for c in engine.calls if c[0] == "clear_group"] == []


class TestRehome:

    def test_concurrent_definition_keeps_its_group(self, config):
        engine = RacingEngine()
        studio = Studio(engine, config)
        studio.definst("early", [], ar("WhiteNoise"))
        engine.inst_group = lambda: studio.state.snapshot().inst_group
        engine.race = lambda: studio.definst("early", [], ar("WhiteNoise"))
        studio.boot()

        inst_group = studio.state.snapshot().inst_group
        group = studio.instrument("early").group
        assert engine.nodes[inst_group].children == [group]
        studio.play("early")
        assert len(engine.synths(group)) == 1
        studio.shutdown()

