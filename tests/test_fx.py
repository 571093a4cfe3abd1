"""
Effect chain linking tests
"""

import threading

import pytest

from rig import Studio
from rig.config import MIXER_BUS
from rig.errors import BusExhaustion, ChainAttached, TopologyNotReady, UnknownInstrument
from rig.fx import fx_chorus, fx_compressor, fx_distortion, fx_echo, fx_reverb
from rig.synthdef import ar


def _path_to_mixer(studio, engine, name):
    """Follow out-bus links from the instrument; return the busses visited."""
    inst = studio.instrument(name)
    readers = {engine.nodes[e.fx_id].controls["in-bus"]: e.fx_id for e in inst.fx_chain}
    bus = inst.out_bus
    path = [bus]
    while bus != MIXER_BUS:
        node = readers[bus]
        bus = engine.nodes[node].controls["out-bus"]
        path.append(bus)
    return path


class TestAppendEffect:

    def test_reverb_then_echo(self, booted, engine, beep):
        reverb = booted.append_effect(beep, fx_reverb())
        echo = booted.append_effect(beep, fx_echo())
        x, y = reverb.bus, echo.bus
        assert x != y
        assert MIXER_BUS not in (x, y)

        inst = booted.instrument(beep)
        assert inst.fx_chain == (reverb, echo)

        # reverb reads bus X, written by beep
        assert reverb.reads_instrument
        assert engine.nodes[reverb.fx_id].controls["in-bus"] == x
        assert inst.out_bus == x
        # echo reads bus Y, written by reverb
        assert echo.src == reverb.fx_id
        assert engine.nodes[echo.fx_id].controls["in-bus"] == y
        assert engine.nodes[reverb.fx_id].controls["out-bus"] == y
        # echo is the only writer to the mixer
        assert engine.nodes[echo.fx_id].controls["out-bus"] == MIXER_BUS

    def test_effects_live_at_tail_of_fx_group(self, booted, engine, beep):
        reverb = booted.append_effect(beep, fx_reverb())
        echo = booted.append_effect(beep, fx_echo())
        fx_group = booted.state.snapshot().fx_group
        assert engine.nodes[fx_group].children == [reverb.fx_id, echo.fx_id]

    def test_running_voices_are_rerouted(self, booted, engine, beep):
        node = beep()
        entry = booted.append_effect(beep, fx_reverb())
        assert engine.nodes[node].controls["out-bus"] == entry.bus
        later = beep()
        assert engine.nodes[later].controls["out-bus"] == entry.bus

    @pytest.mark.parametrize("count", [1, 2, 5])
    def test_single_path_to_mixer(self, booted, engine, beep, count):
        effects = [fx_reverb, fx_echo, fx_chorus, fx_distortion, fx_compressor]
        for make in effects[:count]:
            booted.append_effect(beep, make())
        assert len(booted.instrument(beep).fx_chain) == count
        path = _path_to_mixer(booted, engine, "beep")
        assert len(path) == count + 1
        writers = [n for n in engine.synths(booted.state.snapshot().fx_group)
                   if n.controls["out-bus"] == MIXER_BUS]
        assert len(writers) == 1

    def test_before_boot(self, studio):
        studio.definst("early", [], ar("WhiteNoise"))
        with pytest.raises(TopologyNotReady):
            studio.append_effect("early", fx_reverb())

    def test_unknown_instrument(self, booted):
        with pytest.raises(UnknownInstrument):
            booted.append_effect("ghost", fx_reverb())

    def test_failed_append_rolls_back(self, booted, engine, beep, monkeypatch):
        first = booted.append_effect(beep, fx_reverb())
        before = booted.state.snapshot()
        busses = booted.topology.busses.in_use()

        def broken(*args, **kwargs):
            raise RuntimeError("engine hiccup")

        monkeypatch.setattr(engine, "instantiate_node", broken)
        with pytest.raises(RuntimeError):
            booted.append_effect(beep, fx_echo())

        assert booted.state.snapshot().version == before.version
        assert booted.instrument(beep).fx_chain == (first,)
        assert booted.topology.busses.in_use() == busses
        assert engine.nodes[first.fx_id].controls["out-bus"] == MIXER_BUS

    def test_bus_exhaustion_is_fatal(self, engine, config):
        config.first_dynamic_bus, config.bus_limit = 16, 17
        studio = Studio(engine, config)
        studio.boot()
        studio.definst("beep", [("freq", 440)], lambda freq: ar("SinOsc", freq))
        studio.append_effect("beep", fx_reverb())
        with pytest.raises(BusExhaustion):
            studio.append_effect("beep", fx_echo())
        assert len(studio.instrument("beep").fx_chain) == 1
        studio.shutdown()


class TestClearEffects:

    def test_clear_restores_direct_route(self, booted, engine, beep):
        node = beep()
        chain = [booted.append_effect(beep, fx_reverb()),
                 booted.append_effect(beep, fx_echo())]
        inst = booted.clear_effects(beep)

        assert inst.fx_chain == ()
        assert inst.out_bus == MIXER_BUS
        assert engine.nodes[node].controls["out-bus"] == MIXER_BUS
        for entry in chain:
            assert entry.fx_id not in engine.nodes
        assert booted.topology.busses.in_use() == frozenset()

    def test_clear_then_append_matches_fresh_instrument(self, booted, beep):
        booted.definst("fresh", [("freq", 440)], lambda freq: ar("SinOsc", freq))

        booted.append_effect(beep, fx_reverb())
        booted.append_effect(beep, fx_echo())
        booted.clear_effects(beep)
        again = booted.append_effect(beep, fx_reverb())
        booted.clear_effects(beep)

        fresh = booted.append_effect("fresh", fx_reverb())
        assert (again.bus, again.src, again.fx.name) == (fresh.bus, fresh.src, fresh.fx.name)

    def test_clear_empty_chain(self, booted, beep):
        inst = booted.clear_effects(beep)
        assert inst.fx_chain == ()
        assert inst.out_bus == MIXER_BUS


class TestRemoveWithChain:

    def test_remove_frees_chain_and_keeps_voices(self, booted, engine, beep):
        node = beep()
        chain = [booted.append_effect(beep, fx_reverb()),
                 booted.append_effect(beep, fx_echo())]
        booted.remove_instrument(beep)

        assert booted.topology.busses.in_use() == frozenset()
        assert engine.synths(booted.state.snapshot().fx_group) == []
        for entry in chain:
            assert entry.fx_id not in engine.nodes
        assert node in engine.nodes
        with pytest.raises(UnknownInstrument):
            booted.instrument(beep)

    def test_redefine_after_remove_reuses_busses(self, booted, beep):
        first = booted.append_effect(beep, fx_reverb())
        booted.remove_instrument(beep)
        booted.definst("beep", [("freq", 440)], lambda freq: ar("SinOsc", freq))
        again = booted.append_effect("beep", fx_reverb())
        assert again.bus == first.bus
        assert booted.instrument("beep").fx_chain == (again,)

    def test_clear_instruments_frees_every_chain(self, booted, engine, beep):
        booted.definst("other", [], ar("WhiteNoise"))
        booted.append_effect(beep, fx_reverb())
        booted.append_effect("other", fx_echo())
        booted.clear_instruments()

        assert booted.instruments.names() == ()
        assert booted.topology.busses.in_use() == frozenset()
        assert engine.synths(booted.state.snapshot().fx_group) == []

    def test_registry_removal_refused_while_chained(self, booted, beep):
        booted.append_effect(beep, fx_reverb())
        with pytest.raises(ChainAttached):
            booted.instruments.remove("beep")
        assert len(booted.instrument(beep).fx_chain) == 1

class TestConcurrency:

    def test_concurrent_appends_keep_a_single_chain(self, booted, engine, beep):
        errors = []

        def worker():
            try:
                for _ in range(5):
                    booted.append_effect(beep, fx_reverb())
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert errors == []
        chain = booted.instrument(beep).fx_chain
        assert len(chain) == 20
        assert len({e.bus for e in chain}) == 20
        assert len(_path_to_mixer(booted, engine, "beep")) == 21
