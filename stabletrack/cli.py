"""Command-line entry point for StableTrack diagnostics."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.table import Table

from .config import PRESETS, ConfigError, EngineConfig, get_preset, load_config, save_config
from .engine import FrameResult, TrackingEngine
from .types import Detection

console = Console()

Frame = Tuple[float, List[Detection]]


class DetectionLogError(ValueError):
    """Raised when a recorded detection log cannot be parsed."""


def load_detection_log(path: Path) -> List[Frame]:
    """
    Read a recorded detection log.

    The log is a JSON list of frames::

        [{"timestamp": 0.0,
          "detections": [{"bbox": [cx, cy, w, h], "score": 0.9,
                          "class_index": 0, "label": "cue"}]}]
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise DetectionLogError(f"detection log not found: {path}") from None
    except json.JSONDecodeError as exc:
        raise DetectionLogError(f"invalid JSON in {path}: {exc}") from exc

    if not isinstance(data, list):
        raise DetectionLogError("detection log must be a JSON list of frames")

    frames: List[Frame] = []
    for i, frame in enumerate(data):
        try:
            timestamp = float(frame["timestamp"])
            detections = [
                Detection(
                    bbox=item["bbox"],
                    score=float(item["score"]),
                    class_index=int(item["class_index"]),
                    label=item.get("label"),
                )
                for item in frame.get("detections", [])
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise DetectionLogError(f"frame {i}: {exc}") from exc
        frames.append((timestamp, detections))
    return frames


def _format_position(position) -> str:
    return "(" + ", ".join(f"{v:.3f}" for v in position) + ")"


def frame_table(result: FrameResult, registry_label) -> Table:
    table = Table(
        title=f"t={result.timestamp:.3f}s  detections={len(result.detections)}",
        box=box.ROUNDED,
    )
    table.add_column("Track", style="cyan", justify="right")
    table.add_column("Class", style="green")
    table.add_column("Score", justify="right")
    table.add_column("State")
    table.add_column("Position")
    for obj in result.objects:
        state_style = "green" if obj.state.value == "tracked" else "yellow"
        table.add_row(
            str(obj.track_id),
            registry_label(obj.class_id),
            f"{obj.score:.3f}",
            f"[{state_style}]{obj.state.value}[/{state_style}]",
            _format_position(obj.position),
        )
    return table


def summary_table(engine: TrackingEngine, results: Sequence[FrameResult]) -> Table:
    table = Table(title="Replay Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")

    n_frames = len(results)
    table.add_row("Frames", str(n_frames))
    table.add_row("Detections", str(sum(len(r.detections) for r in results)))
    if n_frames:
        avg_objects = sum(len(r.objects) for r in results) / n_frames
        avg_slots = sum(len(r.active_slots) for r in results) / n_frames
        avg_ms = sum(r.processing_time for r in results) / n_frames * 1000
        table.add_row("Avg objects / frame", f"{avg_objects:.2f}")
        table.add_row("Avg active slots / frame", f"{avg_slots:.2f}")
        table.add_row("Avg processing time", f"{avg_ms:.3f} ms")
    for key, value in engine.get_statistics().items():
        if key != "frame_count":
            table.add_row(key.replace("_", " ").capitalize(), str(value))
    return table


def handle_replay(args: argparse.Namespace) -> int:
    """Replay a detection log through the engine."""
    try:
        config = get_preset(args.preset)
        if args.config:
            config = load_config(args.config, base=config)
        frames = load_detection_log(args.log)
    except (ConfigError, DetectionLogError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    engine = TrackingEngine(config)
    results: List[FrameResult] = []
    for timestamp, detections in frames:
        result = engine.process_frame(detections, timestamp)
        results.append(result)
        if args.frames:
            console.print(frame_table(result, engine.registry.get_label))

    console.print(summary_table(engine, results))

    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps([r.to_dict() for r in results], indent=2), encoding="utf-8")
        console.print(f"[green]Wrote {len(results)} frame results to {output}[/green]")
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Print or write a configuration preset."""
    try:
        config: EngineConfig = get_preset(args.preset)
        if args.config:
            config = load_config(args.config, base=config)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    if args.output:
        path = save_config(config, args.output)
        console.print(f"[green]Saved '{args.preset}' configuration to {path}[/green]")
        return 0

    table = Table(title=f"StableTrack Configuration ({args.preset})", box=box.ROUNDED)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for section, values in config.to_dict().items():
        if isinstance(values, dict):
            for key, value in values.items():
                if key == "classes":
                    value = f"{len(value)} classes"
                table.add_row(f"{section}.{key}", str(value))
        else:
            table.add_row(section, str(values))
    console.print(table)
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all commands and options."""
    parser = argparse.ArgumentParser(
        prog="stabletrack",
        description="StableTrack tracking engine diagnostics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stabletrack replay detections.json             # Summary of a recorded log
  stabletrack replay detections.json --frames    # Per-frame tracked objects
  stabletrack config --preset pool               # Show the pool table preset
  stabletrack config --preset pool -o pool.json  # Write it to a file
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    replay_parser = subparsers.add_parser("replay", help="Replay a recorded detection log")
    replay_parser.add_argument("log", help="Path to detection log (JSON)")
    replay_parser.add_argument(
        "--preset", choices=sorted(PRESETS), default="default", help="Configuration preset"
    )
    replay_parser.add_argument("--config", help="JSON config overriding the preset")
    replay_parser.add_argument("--frames", action="store_true", help="Print every frame")
    replay_parser.add_argument("-o", "--output", help="Write per-frame results as JSON")

    config_parser = subparsers.add_parser("config", help="Show or write a configuration")
    config_parser.add_argument(
        "--preset", choices=sorted(PRESETS), default="default", help="Configuration preset"
    )
    config_parser.add_argument("--config", help="JSON config overriding the preset")
    config_parser.add_argument("-o", "--output", help="Write the configuration to this path")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "replay":
        return handle_replay(args)
    if args.command == "config":
        return handle_config(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
