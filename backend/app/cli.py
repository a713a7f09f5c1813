"""Command-line entry point: analyze a drill video and optionally render its loop."""

import argparse
import json
import logging
import os
import sys

from rich.console import Console
from rich.table import Table

from app.config import KNOWN_STRATEGIES, get_settings
from app.cv.drill_analyzer import DrillAnalyzer
from app.cv.errors import AnalysisTimeout, RenderError, StrategyUnavailable
from app.cv.loop_renderer import JpegStillEncoder, LoopRenderer
from app.cv.video_source import OpenCVVideoSource
from app.schemas.analysis import DrillAnalysisResponse

console = Console()
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drill-loop",
        description="Find repetitions in a drill video and pick a seamless loop segment.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze a drill video.")
    analyze.add_argument("video", help="Input video file.")
    analyze.add_argument("--json", action="store_true", help="Print the analysis as JSON only.")
    analyze.add_argument("--render", metavar="OUT.mp4", default=None,
                         help="Write the repeated loop to this MP4 file.")
    analyze.add_argument("--thumbnail", metavar="OUT.jpg", default=None,
                         help="Write the loop thumbnail to this JPEG file.")
    analyze.add_argument("--strategy", action="append", choices=list(KNOWN_STRATEGIES), default=None,
                         help="Analysis strategy to try, in order (repeatable; default from settings).")
    analyze.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    return parser


def _print_summary(path: str, response: DrillAnalysisResponse, strategy: str) -> None:
    console.print()
    console.print("[bold cyan]Drill Loop[/bold cyan]")
    console.print()

    table = Table(show_header=False, show_edge=False, pad_edge=False, padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Input", f"[cyan]{os.path.abspath(path)}[/cyan]")
    table.add_row("Duration", f"[cyan]{response.duration:.2f}s[/cyan]")
    table.add_row("Strategy", f"[cyan]{strategy or '-'}[/cyan]")
    table.add_row("Repetitions", f"[cyan]{response.repetitions}[/cyan]")
    table.add_row("Loop", f"[cyan]{response.loop_start:.2f}s – {response.loop_end:.2f}s[/cyan]")
    table.add_row("Confidence", f"[cyan]{response.confidence:.2f}[/cyan]")
    table.add_row("Key frames", f"[cyan]{', '.join(str(k) for k in response.key_frames) or '-'}[/cyan]")
    console.print(table)
    console.print()


def _write_file(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def run_analyze(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.strategy:
        settings = settings.model_copy(update={"analysis_strategies": args.strategy})

    if not os.path.isfile(args.video):
        console.print(f"[bold red]Error:[/bold red] Input file does not exist: {args.video}")
        return 1

    try:
        result = DrillAnalyzer(settings=settings).analyze_file(args.video)
    except (AnalysisTimeout, StrategyUnavailable) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 1

    response = DrillAnalysisResponse.from_result(result)
    if args.json:
        print(json.dumps(response.model_dump(by_alias=True)))
    else:
        _print_summary(args.video, response, result.strategy)

    if not (args.render or args.thumbnail):
        return 0

    loop = result.loop_spec
    if loop is None:
        console.print("[bold red]Error:[/bold red] No loop available to render.")
        return 1

    renderer = LoopRenderer.from_settings(settings)
    try:
        with OpenCVVideoSource(args.video) as source:
            rendered = renderer.render(
                source, loop, still_encoder=JpegStillEncoder(settings.thumbnail_jpeg_quality)
            )
    except RenderError as e:
        console.print(f"[bold red]Error:[/bold red] Render failed: {e}")
        return 1

    if args.render:
        _write_file(args.render, rendered.video)
        logger.info(f"Wrote loop video to {args.render}")
    if args.thumbnail:
        _write_file(args.thumbnail, rendered.thumbnail)
        logger.info(f"Wrote thumbnail to {args.thumbnail}")

    if not args.json:
        console.print(f"  Rendered [cyan]{rendered.frame_count}[/cyan] frames "
                      f"at [cyan]{rendered.fps:.0f}[/cyan] FPS")
        console.print("[bold green]Done![/bold green]")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose or get_settings().debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if args.command == "analyze":
        return run_analyze(args)
    return 2


if __name__ == "__main__":
    sys.exit(main())
