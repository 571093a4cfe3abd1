"""Entry point and argument parsing for rig.

Subcommands
-----------
demo    Boot a studio on the in-process loopback engine, play a few beats
        through an effect chain and print the resulting node tree.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from rig.config import StudioConfig
from rig.engine import EngineConnection, LoopbackEngine
from rig.fx import fx_chorus, fx_compressor, fx_distortion, fx_echo, fx_reverb
from rig.logging_setup import configure_logging
from rig.studio import Studio
from rig.synthdef import ar

logger = logging.getLogger(__name__)

EFFECTS = {
    "reverb": fx_reverb,
    "echo": fx_echo,
    "chorus": fx_chorus,
    "distortion": fx_distortion,
    "compressor": fx_compressor,
}

DEMO_NOTES = (440.0, 550.0, 660.0, 880.0)


# -- shared helpers ----------------------------------------------------------

def _add_studio_args(parser: argparse.ArgumentParser):
    """Add arguments used when starting a studio."""
    parser.add_argument("--bpm", type=float, default=None,
                        help="Initial BPM (default: RIG_BPM or 120)")
    parser.add_argument("--link", action="store_true",
                        help="Enable Ableton Link on start")
    parser.add_argument("--settle", type=float, default=0.0,
                        help="Seconds to wait before starting the mixer")
    parser.add_argument("--log-level", default=None,
                        help="Log level (default: LOG_LEVEL or WARNING)")


def _boot_studio(args, engine: EngineConnection) -> Studio:
    """Create and boot a Studio from parsed arguments."""
    config = StudioConfig.from_env()
    config.mixer_settle_delay = args.settle
    if args.bpm is not None:
        config.bpm = args.bpm
    studio = Studio(engine, config)

    if args.link:
        try:
            studio.session.metro.enable_link()
        except Exception as e:
            logger.warning("link startup failed: %s", e)

    studio.boot()
    return studio


def format_tree(engine: LoopbackEngine, group: Optional[int] = None,
                depth: int = 0) -> List[str]:
    """Render the loopback node tree, one node per line."""
    group = engine.ROOT if group is None else group
    lines = []
    for child in engine.nodes[group].children:
        node = engine.nodes[child]
        pad = "  " * depth
        if node.is_group:
            lines.append(f"{pad}{child} group")
            lines.extend(format_tree(engine, child, depth + 1))
        else:
            ctl = " ".join(f"{k}={v}" for k, v in sorted(node.controls.items()))
            lines.append(f"{pad}{child} {node.definition} {ctl}".rstrip())
    return lines


# -- subcommand handlers -----------------------------------------------------

def _cmd_demo(args) -> int:
    """Play a short session on the loopback engine."""
    level = configure_logging(args.log_level)
    logger.info("rig demo starting (log level: %s)", logging.getLevelName(level))

    engine = LoopbackEngine()
    studio = _boot_studio(args, engine)
    try:
        beep = studio.definst("beep", [("freq", 440), ("amp", 0.3)],
                              lambda freq, amp: ar("SinOsc", freq) * amp)
        for name in args.fx or ["reverb", "echo"]:
            studio.append_effect(beep, EFFECTS[name]())

        studio.define_track("lead", beep)
        studio.set_track_callback(
            "lead", lambda metro, beat, inst: inst(freq=DEMO_NOTES[beat % len(DEMO_NOTES)]))
        for _ in range(args.beats):
            studio.advance_session()
        studio.stop_session()

        for line in format_tree(engine):
            print(line)
    finally:
        studio.shutdown()
    return 0


# -- main --------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        description="rig - studio routing and instrument lifecycle")
    sub = ap.add_subparsers(dest="command")

    # -- demo ----------------------------------------------------------------
    sp_demo = sub.add_parser(
        "demo",
        help="Play a few beats on the in-process loopback engine")
    _add_studio_args(sp_demo)
    sp_demo.add_argument("--beats", type=int, default=4,
                         help="Number of beats to play")
    sp_demo.add_argument("--fx", action="append", choices=sorted(EFFECTS),
                         help="Effect to append to the demo instrument (repeatable; "
                              "default: reverb and echo)")
    sp_demo.set_defaults(func=_cmd_demo)

    args = ap.parse_args(argv)
    if args.command is None:
        ap.error("a command is required: demo")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
