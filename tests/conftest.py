import pytest

from rig import LoopbackEngine, Studio, StudioConfig, ar


def beep_graph(freq, amp):
    return ar("SinOsc", freq) * amp


@pytest.fixture
def engine():
    """Fresh in-process engine"""
    return LoopbackEngine()


@pytest.fixture
def config():
    return StudioConfig(mixer_settle_delay=0)


@pytest.fixture
def studio(engine, config):
    """Studio that has not been booted yet"""
    s = Studio(engine, config)
    yield s
    s.shutdown()


@pytest.fixture
def booted(studio):
    """Studio after a completed boot (mixer running)"""
    studio.boot()
    return studio


@pytest.fixture
def beep(booted):
    """The 'beep' instrument: sine at freq, scaled by amp"""
    return booted.definst("beep", [("freq", 440), ("amp", 0.3)], beep_graph)
