#!/usr/bin/env python3
"""
Cadence - match music tempo to walking cadence

Command line entry point:
  analyze  estimate a track's BPM and beat offset
  play     play a track with cadence sync (simulated walking)
  devices  list audio output devices
"""

import argparse
import cProfile
import sys
import threading
import time
from pathlib import Path

from audio_decoder import decode_file
from config_persistence import get_report_dir, load_config
from errors import CadenceError
from logging_utils import log_event, set_log_level


def run_analyze(args, config) -> int:
    from tempo_estimator import TempoEstimator

    try:
        audio = decode_file(args.input)
        result = TempoEstimator(config).detect(audio)
    except CadenceError as e:
        log_event("ERROR", "Analyze", "No tempo available", file=args.input, error=e)
        return 1

    print(f"{Path(args.input).name}: {result.bpm} BPM, first beat at {result.beat_offset:.3f}s")
    return 0


def _walk(session, spm: float, stop_event: threading.Event) -> None:
    """Scripted walking: one simulated step every 60/spm seconds."""
    interval = 60.0 / spm
    while not stop_event.wait(interval):
        session.simulate_step()


def run_play(args, config) -> int:
    from playback_engine import PlaybackEngine
    from sync_session import SyncSession

    if args.min_rate is not None:
        config.rate.min_rate = args.min_rate
    if args.max_rate is not None:
        config.rate.max_rate = args.max_rate
    if args.threshold is not None:
        config.step.threshold = args.threshold
    if not 0 < config.rate.min_rate <= config.rate.max_rate or config.step.threshold <= 0:
        log_event("ERROR", "Play", "Invalid sync settings",
                  min_rate=config.rate.min_rate, max_rate=config.rate.max_rate,
                  threshold=config.step.threshold)
        return 2

    try:
        audio = decode_file(args.input)
    except CadenceError as e:
        log_event("ERROR", "Play", "Could not load track", file=args.input, error=e)
        return 1

    report_dir = get_report_dir() if config.report_generation_enabled else None
    session = SyncSession(config, report_dir=report_dir)
    engine = PlaybackEngine(config, rate_provider=session.tick)
    engine.load(audio)

    name = Path(args.input).name
    if args.bpm:
        session.load_track(name, None)
        if not session.set_manual_bpm(args.bpm):
            log_event("WARN", "Play", "Manual BPM rejected, playing without a tempo reference", bpm=args.bpm)
    else:
        session.load_track(name, audio)

    walker = None
    stop_walking = threading.Event()
    if args.simulate_spm:
        session.start_sync(simulate=True)
        walker = threading.Thread(target=_walk, args=(session, args.simulate_spm, stop_walking), daemon=True)
        walker.start()

    engine.play()
    last_status = 0.0
    try:
        while engine.playing:
            time.sleep(0.1)
            now = time.monotonic()
            if now - last_status >= 2.0:
                last_status = now
                log_event("INFO", "Play", "Status",
                          position=f"{engine.position:.1f}s",
                          spm=session.spm or "--",
                          track_bpm=int(session.rate_controller.original_bpm) or "--",
                          rate=f"{session.rate_controller.current_rate:.2f}x",
                          adjusted_bpm=session.adjusted_bpm or "--")
    except KeyboardInterrupt:
        log_event("INFO", "Play", "Interrupted")
    finally:
        stop_walking.set()
        if walker is not None:
            walker.join(timeout=1.0)
        session.stop_sync()
        engine.stop()
    return 0


def run_devices(args, config) -> int:
    import sounddevice as sd

    for i, d in enumerate(sd.query_devices()):
        if d['max_output_channels'] <= 0:
            continue
        print(f"[{i}] {d['name']}")
        print(f"    Output: {d['max_output_channels']} channels, Default SR: {d['default_samplerate']} Hz")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", default=None,
                        help="DEBUG/INFO/WARNING/ERROR (default: from config)")
    common.add_argument("--profile", action="store_true",
                        help="Enable cProfile and save stats to --profile-out")
    common.add_argument("--profile-out", default="profile.prof",
                        help="Path to save cProfile stats (default: profile.prof)")

    parser = argparse.ArgumentParser(description="Cadence - match music tempo to walking cadence")
    sub = parser.add_subparsers(dest="command", required=True)

    p_analyze = sub.add_parser("analyze", parents=[common], help="Estimate a track's BPM and beat offset")
    p_analyze.add_argument("input", help="Audio file")
    p_analyze.set_defaults(handler=run_analyze)

    p_play = sub.add_parser("play", parents=[common], help="Play a track with cadence sync")
    p_play.add_argument("input", help="Audio file")
    p_play.add_argument("--bpm", type=int, default=None, help="Manual track BPM (skips analysis)")
    p_play.add_argument("--simulate-spm", type=float, default=None,
                        help="Simulate walking at this many steps per minute")
    p_play.add_argument("--threshold", type=float, default=None, help="Step detection threshold (m/s²)")
    p_play.add_argument("--min-rate", type=float, default=None, help="Slowest playback rate (default 0.7)")
    p_play.add_argument("--max-rate", type=float, default=None, help="Fastest playback rate (default 1.4)")
    p_play.set_defaults(handler=run_play)

    p_devices = sub.add_parser("devices", parents=[common], help="List audio output devices")
    p_devices.set_defaults(handler=run_devices)
    return parser


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    config = load_config()
    set_log_level(args.log_level or config.log_level)

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = args.handler(args, config)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = args.handler(args, config)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
