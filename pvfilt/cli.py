"""Command-line interface for pvfilt."""

import argparse
import logging
import re
import sys

import tracerite

from pvfilt import __version__
from pvfilt.config import Config, Mode, Policy
from pvfilt.display import ProgressDisplay
from pvfilt.estimate import Estimator
from pvfilt.monitor import ExitCode, Monitor
from pvfilt.source import open_source
from pvfilt.utils import format_time, parse_duration

tracerite.load()

__all__ = ["build_config", "build_parser", "main"]

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pvfilt",
        description="Process a program's output to chart its progress and estimate completion",
        epilog="Example: pvfilt -w -n 2s -- dmsetup status vg-lv",
    )
    parser.add_argument(
        "command",
        nargs="*",
        help="Command to run, after --. stdin is read if omitted",
    )
    parser.add_argument(
        "-w",
        "--watch",
        action="store_true",
        help="Execute the command periodically like watch(1)",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in Mode],
        default=None,
        help="Override the mode implied by -w and the command",
    )
    parser.add_argument(
        "-n",
        "--interval",
        help="Sampling interval in watch mode (default: 1s)",
        type=str,
        default="1s",
    )
    parser.add_argument(
        "-r",
        "--refresh",
        help="Display refresh interval (default: 100ms)",
        type=str,
        default="100ms",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        help="Kill a watched command running longer than this (e.g. 2s, 500ms)",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--on-error",
        choices=[p.value for p in Policy],
        default=Policy.CONTINUE.value,
        help="Skip failed cycles or abort on the first one (default: continue)",
    )
    parser.add_argument(
        "--capacity",
        help="Samples kept for the chart (default: 1000)",
        type=int,
        default=1000,
    )
    parser.add_argument(
        "--eta-window",
        help="Fit the ETA over samples this recent, or 'all' (default: 5m)",
        type=str,
        default="5m",
    )
    parser.add_argument(
        "--height",
        help="Maximum display height in rows (default: 16)",
        type=int,
        default=16,
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Quiet mode: no display, no summary, only errors",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log skipped cycles (-v) and debug details (-vv)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_config(argv: list[str] | None = None) -> Config:
    """Parse arguments into a validated Config. Raises ValueError."""
    args = build_parser().parse_args(argv)

    if args.mode:
        mode = Mode(args.mode)
    elif not args.command:
        mode = Mode.PIPE
    elif args.watch:
        mode = Mode.WATCH
    else:
        mode = Mode.RUN_ONCE

    eta_window = None if args.eta_window.strip().lower() == "all" else parse_duration(args.eta_window)

    config = Config(
        mode=mode,
        command=list(args.command),
        interval=parse_duration(args.interval),
        render_interval=parse_duration(args.refresh),
        timeout=parse_duration(args.timeout),
        on_error=Policy(args.on_error),
        capacity=args.capacity,
        eta_window=eta_window,
        max_height=args.height,
        quiet=args.quiet,
        verbose=args.verbose,
    )
    return config.validate()


def configure_logging(config: Config):
    if config.quiet:
        level = logging.ERROR
    elif config.verbose >= 2:
        level = logging.DEBUG
    elif config.verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def print_summary(monitor: Monitor):
    """Print a one-liner summary with optional colors."""
    latest = monitor.latest()
    stats = monitor.stats
    if latest is None:
        value = "no progress seen"
    else:
        value = f"\033[1m{latest.numerator}/{latest.denominator}\033[0;32m ({latest.fraction:.1%})"

    failures = f" \033[31m({stats.failures} failed cycles)\033[0m" if stats.failures else ""
    status = "" if monitor.exit_code == ExitCode.OK else f" \033[31m[{monitor.exit_code.name.lower()}]\033[0m"
    msg = (
        f"\n\033[36m[pvfilt]\033[32m {monitor.state.value} at {value} after "
        f"\033[1m{format_time(stats.elapsed)}\033[0;32m, {stats.samples} samples\033[0m"
        f"{failures}{status}\n"
    )

    if not sys.stderr.isatty():
        msg = re.sub(r"\033\[[0-9;]*m", "", msg)

    sys.stderr.write(msg)


def _main(argv: list[str] | None = None) -> int:
    """Internal main function that may raise exceptions."""
    config = build_config(argv)
    configure_logging(config)

    source = open_source(config)
    display = ProgressDisplay(
        "pvfilt",
        max_height=config.max_height,
        active=False if config.quiet else None,
    )
    estimator = Estimator(
        window=config.eta_window,
        max_samples=config.eta_samples,
        min_samples=config.min_samples,
    )
    monitor = Monitor(
        source,
        display,
        estimator=estimator,
        capacity=config.capacity,
        # Stream sources block until the next line; only watch mode is paced
        interval=config.interval if config.mode is Mode.WATCH else 0,
        render_interval=config.render_interval,
        on_error=config.on_error,
    )
    code = monitor.run()
    if not config.quiet:
        print_summary(monitor)
    return code


def main():
    """Main entry point for the CLI with exception handling."""
    try:
        code = _main()
    except (KeyboardInterrupt, BrokenPipeError):
        sys.exit(ExitCode.INTERRUPTED)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(ExitCode.USAGE)
    sys.exit(code)
