"""CLI entry point."""

from __future__ import annotations

import argparse
from dataclasses import replace
from datetime import datetime
import json
import logging
import os
import threading

from .audio_utils import read_wav_frames
from .config import Config, MODE_ALIASES, load_config, save_config
from .logging_utils import setup_logging
from .recorder import list_input_devices, stream_frames
from .renderer import render_report
from .session import AnalysisSession, FrameWorker

DEFAULT_CONFIG = "voicetrace_config.yml"
MODE_CHOICES = sorted(set(MODE_ALIASES) | {"direct", "relayed"})


def _load(args) -> Config:
    if args.config and os.path.exists(args.config):
        cfg = load_config(args.config)
    else:
        cfg = Config()
    if getattr(args, "mode", None):
        cfg = replace(cfg, capture_mode=args.mode)
    if getattr(args, "frame_size", None):
        cfg.frame_size = args.frame_size
    if getattr(args, "rate", None):
        cfg.sample_rate_hz = args.rate
    return cfg


def _print_profiles(session: AnalysisSession) -> None:
    for stats in session.profile_dump().speakers:
        lo, hi = stats.pitch_range
        print(
            f"{stats.speaker_id}: {stats.avg_pitch} Hz ({lo}-{hi}), "
            f"{stats.samples} frames, stress {stats.stress_level:.1f}"
        )
    dynamics = session.conversation_dynamics()
    if dynamics.dominant_speaker:
        print(
            f"Conversation: {dynamics.turn_taking_pattern}, "
            f"dominant {dynamics.dominant_speaker}, "
            f"quality {dynamics.interaction_quality}/10"
        )


def _load_segments(path: str) -> list:
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    segments = []
    for item in payload:
        text = str(item.get("text", "")).strip()
        if not text:
            continue
        end = float(item.get("end", item.get("start", 0.0)))
        segments.append((end, text))
    return sorted(segments, key=lambda s: s[0])


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="voicetrace")
    sub = parser.add_subparsers(dest="command")

    devices_cmd = sub.add_parser("devices")
    devices_cmd.add_argument("--match", help="Filter device names by substring.")
    devices_cmd.add_argument(
        "--loopback",
        action="store_true",
        help="List output devices for system audio capture (WASAPI).",
    )

    analyze_cmd = sub.add_parser("analyze")
    analyze_cmd.add_argument("audio_path", help="Path to audio file.")
    analyze_cmd.add_argument("--config", default=DEFAULT_CONFIG, help="Config.")
    analyze_cmd.add_argument("--mode", choices=MODE_CHOICES, help="Capture mode.")
    analyze_cmd.add_argument("--frame-size", type=int, help="Samples per frame.")
    analyze_cmd.add_argument(
        "--segments", help="Transcript JSON: [{\"start\", \"end\", \"text\"}]."
    )
    analyze_cmd.add_argument("--out", help="Write a Markdown report.")
    analyze_cmd.add_argument("--title", default="Session", help="Report title.")

    listen_cmd = sub.add_parser("listen")
    listen_cmd.add_argument("--config", default=DEFAULT_CONFIG, help="Config.")
    listen_cmd.add_argument("--mode", choices=MODE_CHOICES, help="Capture mode.")
    listen_cmd.add_argument("--device", help="Preferred device name substring.")
    listen_cmd.add_argument("--rate", type=int, help="Sample rate.")
    listen_cmd.add_argument("--frame-size", type=int, help="Samples per frame.")
    listen_cmd.add_argument(
        "--duration", type=float, help="Seconds. Omit for manual stop."
    )
    listen_cmd.add_argument(
        "--loopback",
        action="store_true",
        help="Capture system audio via WASAPI loopback.",
    )

    config_cmd = sub.add_parser("config")
    config_cmd.add_argument("--out", default=DEFAULT_CONFIG, help="Output path.")

    args = parser.parse_args(argv)
    if args.command == "devices":
        devices = list_input_devices(loopback=bool(args.loopback))
        if args.match:
            devices = [
                d for d in devices if args.match.lower() in d.get("name", "").lower()
            ]
        for device in devices:
            name = device.get("name", "Unknown")
            index = device.get("index", "?")
            if args.loopback:
                channels = device.get("max_output_channels", 0)
                line = f"[{index}] {name} (outputs: {channels})"
            else:
                channels = device.get("max_input_channels", 0)
                line = f"[{index}] {name} (inputs: {channels})"
            print(line)
        return 0

    if args.command == "config":
        save_config(args.out, Config())
        print(f"Wrote {args.out}")
        return 0

    if args.command == "analyze":
        cfg = _load(args)
        setup_logging(
            cfg.log_dir, logging.DEBUG if cfg.debug_logging else logging.INFO
        )
        sample_rate, frames = read_wav_frames(args.audio_path, cfg.frame_size)
        session = AnalysisSession(cfg, sample_rate_hz=sample_rate)
        pending = _load_segments(args.segments) if args.segments else []
        frame_seconds = cfg.frame_size / float(sample_rate)
        elapsed = 0.0
        for index, frame in enumerate(frames):
            elapsed = (index + 1) * frame_seconds
            session.analyze_frame(frame, elapsed)
            while pending and pending[0][0] <= elapsed:
                end, text = pending.pop(0)
                session.submit_segment(text, end)
        for end, text in pending:
            session.submit_segment(text, end)

        _print_profiles(session)
        transcript = session.transcript()
        if transcript:
            print("")
            print(transcript)
        if args.out:
            report = render_report(
                title=args.title,
                date=datetime.now().strftime("%Y-%m-%d"),
                capture_mode=cfg.capture_mode,
                sample_rate_hz=sample_rate,
                segments=session.segments(),
                transcript=transcript,
                profiles=session.profile_dump(),
                low_confidence=list(session.diagnostics().segments),
                audio_filename=os.path.basename(args.audio_path),
                duration_seconds=elapsed,
                role_labels=cfg.diarization.role_labels,
                analytics=session.analytics(),
                dynamics=session.conversation_dynamics(),
                voice_turns=session.voice_turns(include_open=True),
            )
            with open(args.out, "w", encoding="utf-8") as handle:
                handle.write(report)
            print(f"Report saved: {args.out}")
        session.close()
        return 0

    if args.command == "listen":
        cfg = _load(args)
        setup_logging(
            cfg.log_dir,
            logging.DEBUG if cfg.debug_logging else logging.INFO,
            console=True,
        )
        session = AnalysisSession(cfg)

        def _show(characteristics) -> None:
            metrics = session.realtime_metrics()
            flag = " STRESS" if metrics.stress else ""
            print(
                f"{characteristics.speaker_id:<20} {characteristics.register:<7} "
                f"{characteristics.pitch:6.1f} Hz  conf {characteristics.confidence:.2f}  "
                f"vol {characteristics.loudness:5.1f}  {characteristics.quality}{flag}"
            )

        worker = FrameWorker(session, on_characteristics=_show)
        stop_event = threading.Event()
        worker.start()
        try:
            result = stream_frames(
                worker.submit_frame,
                sample_rate_hz=cfg.sample_rate_hz,
                frame_size=cfg.frame_size,
                device_name=args.device,
                loopback=bool(args.loopback),
                relayed=cfg.capture_mode == "relayed",
                stop_event=stop_event,
                duration_seconds=args.duration,
            )
        finally:
            stop_event.set()
            worker.stop()
        print(
            f"Captured {result.frames_delivered} frames from {result.device_name} "
            f"({worker.dropped_frames} dropped)"
        )
        _print_profiles(session)
        session.close()
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
