"""Progress chart at the bottom of the terminal."""

import logging
import math
import os
import re
import sys
import time
from dataclasses import dataclass, field
from typing import TextIO

from pvfilt.estimate import Estimate
from pvfilt.sampler import Sample
from pvfilt.utils import format_time

__all__ = ["ProgressDisplay", "RenderError", "Snapshot", "downsample"]

logger = logging.getLogger(__name__)

# Unicode block characters for graph (8 levels per cell)
GRAPH_BLOCKS = " ▁▂▃▄▅▆▇█"
# Horizontal eighths for the progress bar
BAR_BLOCKS = " ▏▎▍▌▋▊▉"

# Default height of progress display in terminal rows
MAX_HEIGHT = 16

# Smaller terminals cannot show header, bar and status
MIN_COLS = 20
MIN_ROWS = 3

# Shortest time span shown on the chart's X axis
MIN_SPAN = 10.0

# Left margin: " " + 4-char label + " "
LABEL_WIDTH = 6

# Trailing lines of the latest command output shown under the status line
OUTPUT_LINES = 3

_ANSI = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_CONTROL = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


class RenderError(Exception):
    """The terminal cannot show the display."""

    exit_code = 6


@dataclass
class Snapshot:
    """Everything one frame needs, copied out of the monitor under its lock."""

    samples: list[Sample]
    latest: Sample | None
    estimate: Estimate
    now: float
    started: float
    wall: float = field(default_factory=time.time)
    status: str = ""
    output: str = ""
    label: str = ""
    finished: bool = False


def _visible_len(s: str) -> int:
    return len(_ANSI.sub("", s))


def downsample(
    samples: list[Sample], t_start: float, t_end: float, width: int
) -> list[float | None]:
    """Average sample fractions per chart column.

    Columns without samples hold the previous value, since progress stays at
    its last reading until a new one arrives. Columns before the first sample
    are None. The last column also takes samples stamped exactly at t_end.
    """
    if width <= 0:
        return []
    if not samples:
        return [None] * width
    step = (t_end - t_start) / width
    values: list[float | None] = []
    held: float | None = None
    idx = 0
    n = len(samples)
    # Samples before the window only seed the held value
    while idx < n and samples[idx].timestamp < t_start:
        held = samples[idx].fraction
        idx += 1
    for col in range(width):
        col_end = t_start + (col + 1) * step
        last_col = col == width - 1
        total = 0.0
        count = 0
        while idx < n and (last_col or samples[idx].timestamp < col_end):
            total += samples[idx].fraction
            count += 1
            idx += 1
        if count:
            held = total / count
        values.append(held)
    return values


def _format_rate(rate: float | None) -> str:
    """Format fraction-per-second as a percentage rate."""
    if rate is None or rate <= 0:
        return "--"
    pct_per_sec = rate * 100
    if pct_per_sec >= 1:
        return f"{pct_per_sec:.1f}%/s"
    if pct_per_sec * 60 >= 1:
        return f"{pct_per_sec * 60:.1f}%/min"
    return f"{pct_per_sec * 3600:.1f}%/h"


class ProgressDisplay:
    """Progress chart at the bottom of the terminal.

    Only active when the output stream is a tty. Frames are built by
    ``render()`` from a ``Snapshot`` and painted by ``draw()``; the caller
    decides the cadence. The display never modifies what it is given.

    Uses the bottom portion of the terminal with a scrolling region preserved
    at the top, allowing log output to scroll above the progress display.
    """

    def __init__(
        self,
        title: str = "pvfilt",
        stream: TextIO | None = None,
        max_height: int = MAX_HEIGHT,
        active: bool | None = None,
    ):
        self.title = title
        self.stream = stream if stream is not None else sys.stderr
        self.max_height = max_height
        self.active = self.stream.isatty() if active is None else active
        # Terminal handling
        self._current_scroll_bottom: int | None = None
        self._hidden_cursor = False
        self._first_draw = True
        self._last_size: tuple[int, int] | None = None

    def start(self):
        if not self.active:
            return
        self._setup_terminal_state()

    def stop(self, final: Snapshot | None = None):
        if not self.active:
            return
        # Final render so the finished state stays on screen
        if final is not None:
            try:
                self.draw(final)
            except RenderError as e:
                logger.debug("Final frame not drawn: %s", e)
        self._restore_terminal_state()

    def _write(self, text: str):
        try:
            self.stream.write(text)
            self.stream.flush()
        except (OSError, ValueError) as e:
            raise RenderError(f"Cannot write to terminal: {e}") from e

    def _setup_terminal_state(self):
        """Prepare terminal: hide cursor and start using bottom reserved block."""
        self._write("\x1b[?25l")  # Hide cursor to reduce flicker
        self._hidden_cursor = True

    def _restore_terminal_state(self):
        """Restore terminal scrolling and cursor after progress is done."""
        # Reset scrolling region to full screen
        buf = ["\x1b[r"]
        self._current_scroll_bottom = None

        # Move cursor to a fresh line under the progress block
        cols, rows = self._get_terminal_size()
        buf.append(f"\x1b[{rows};1H\n")

        if self._hidden_cursor:
            buf.append("\x1b[?25h")
            self._hidden_cursor = False
        try:
            self._write("".join(buf))
        except RenderError as e:
            logger.debug("Terminal not restored: %s", e)

    def _get_terminal_size(self) -> tuple[int, int]:
        """Return (columns, rows)."""
        try:
            size = os.get_terminal_size(self.stream.fileno())
            return size.columns, size.lines
        except (OSError, ValueError):
            return 80, 24

    def _render_graph_row(
        self,
        values: list[float | None],
        lo: float,
        hi: float,
        row: int,
        total_rows: int,
    ) -> str:
        """Render one row of the graph using Unicode blocks.

        Row 0 is top, total_rows-1 is bottom. Each cell can show 8 levels.
        None values (no data yet) are blank.
        """
        chars = []
        scale = hi - lo
        row_bottom = (total_rows - row - 1) * 8
        row_top = row_bottom + 8
        for v in values:
            if v is None:
                chars.append(" ")
                continue
            # Normalize value to 0..total_rows*8 range
            normalized = (v - lo) / scale * total_rows * 8 if scale > 0 else 0
            if normalized <= row_bottom:
                chars.append(" ")
            elif normalized >= row_top:
                chars.append("█")
            else:
                level = math.ceil(normalized - row_bottom)
                chars.append(GRAPH_BLOCKS[min(level, 8)])
        return "".join(chars)

    def _nice_y_ticks(self, lo: float, hi: float, graph_rows: int) -> list[float]:
        """Return nice Y-axis tick values (fractions) from lo to hi.

        Chooses a nice interval (1, 2, 2.5, 5 x 10^N percent) leaving enough
        rows between labels for readability.
        """
        span = hi - lo
        if span <= 0:
            return [lo]
        min_row_spacing = 3
        max_ticks = max(2, graph_rows // min_row_spacing)
        best_interval = span
        for exp in range(-2, 6):
            for base in (1, 2, 2.5, 5):
                interval = base * (10**exp)
                if 1 <= span / interval <= max_ticks:
                    best_interval = interval
                    break
            else:
                continue
            break
        ticks = []
        val = math.ceil(lo / best_interval - 1e-9) * best_interval
        while val <= hi + 1e-9:
            ticks.append(val)
            val += best_interval
        return ticks

    def _assign_ticks_to_rows(
        self, ticks: list[float], lo: float, hi: float, graph_rows: int
    ) -> dict[int, str]:
        """Assign each tick to the row closest to its value.

        Returns a dict mapping row index to formatted label string.
        """
        row_labels: dict[int, str] = {}
        if graph_rows <= 1 or hi <= lo:
            return {0: f"{(ticks[0] if ticks else lo) * 100:>3.0f}%"}

        for tick in ticks:
            # Row 0 is top (hi), row graph_rows-1 is bottom (lo)
            exact_row = (1 - (tick - lo) / (hi - lo)) * (graph_rows - 1)
            best_row = max(0, min(graph_rows - 1, round(exact_row)))
            # Only assign if row is not already taken (first tick wins)
            if best_row not in row_labels:
                row_labels[best_row] = f"{tick * 100:>3.0f}%"
        return row_labels

    def _build_time_axis(self, graph_width: int, span: float) -> list[str]:
        """Build time axis with nice interval labels, ending at "now"."""

        def nice_time_interval(total_secs):
            """Return a nice interval for time axis labels."""
            nice_intervals = [
                1,
                2,
                5,
                10,
                15,
                30,
                60,
                120,
                300,
                600,
                900,
                1800,
                3600,
                7200,
                18000,
                36000,
            ]
            max_labels = max(1, graph_width // 10)
            for interval in nice_intervals:
                if total_secs / interval <= max_labels:
                    return interval
            return nice_intervals[-1]

        time_axis = [" "] * graph_width
        interval = nice_time_interval(span)
        age = 0
        while age <= span:
            col = graph_width - 1 - int(age / span * (graph_width - 1))
            label = "now" if age == 0 else f"-{format_time(age)}"
            start = max(0, min(col - len(label) // 2, graph_width - len(label)))
            end = min(graph_width, start + len(label))
            if all(c == " " for c in time_axis[start:end]):
                for i, ch in enumerate(label):
                    if start + i < graph_width:
                        time_axis[start + i] = ch
            age += interval
        return time_axis

    def _build_header(self, cols: int, snap: Snapshot) -> str:
        """Build the header line with value, rate, ETA and command label."""
        elapsed = snap.now - snap.started
        spinner = "●" if snap.finished else "◐◓◑◒"[int(elapsed * 4) % 4]
        stats = f"\x1b[1;36m{self.title} {spinner}\x1b[0m  "
        latest = snap.latest
        if latest is None:
            stats += f"\x1b[2mWaiting for data... {format_time(elapsed):>8}\x1b[0m"
        else:
            est = snap.estimate
            remaining = est.remaining(snap.now)
            if latest.fraction >= 1:
                eta_str = "done"
            elif remaining is not None:
                eta_str = format_time(max(0.0, remaining))
            else:
                eta_str = "--"
            stats += (
                f"{latest.numerator}\x1b[2m/\x1b[0m{latest.denominator}  "
                f"{latest.fraction * 100:5.1f}%  "
                f"\x1b[2m@\x1b[0m {_format_rate(est.rate):<10}  "
                f"\x1b[2mest.\x1b[0m {eta_str:<8}"
            )

        # Calculate available space for the command label
        available = cols - _visible_len(stats) - 4  # 4 for "  > "
        name = snap.label
        if len(name) > available > 3:
            name = "…" + name[-(available - 1) :]
        elif available <= 3:
            name = ""
        if name:
            return f"{stats}  \x1b[2m>\x1b[0m {name}"
        return stats

    def _build_bar(self, width: int, latest: Sample | None) -> str:
        """Progress bar for the latest fraction, eighth-cell resolution."""
        if latest is None:
            return f" {'':>4} \x1b[38;5;235m{'█' * width}\x1b[0m"
        frac = latest.fraction
        pct = max(-99.0, min(999.0, frac * 100))
        cells = max(0.0, min(1.0, frac)) * width
        full = int(cells)
        partial = ""
        if full < width:
            partial = BAR_BLOCKS[int((cells - full) * 8)].replace(" ", "")
        empty = width - full - len(partial)
        return (
            f" \x1b[1m{pct:>3.0f}%\x1b[0m "
            f"\x1b[32m{'█' * full}{partial}\x1b[0m\x1b[38;5;235m{'█' * empty}\x1b[0m"
        )

    def _build_status(self, cols: int, snap: Snapshot) -> str:
        parts = [snap.status] if snap.status else []
        est = snap.estimate
        remaining = est.remaining(snap.now)
        if remaining is not None and remaining > 0 and not snap.finished:
            done_at = time.strftime("%H:%M:%S", time.localtime(snap.wall + remaining))
            parts.append(f"done ~{done_at}")
        if est.r_squared is not None:
            # Negative when the line fits worse than the mean
            parts.append(f"fit r² {max(0.0, est.r_squared):.2f}")
        elif est.reason and snap.latest is not None:
            parts.append(f"eta: {est.reason}")
        text = "  •  ".join(parts)[: max(0, cols - LABEL_WIDTH)]
        return f"{'':<{LABEL_WIDTH}}\x1b[2m{text}\x1b[0m"

    def _build_output(self, cols: int, text: str) -> list[str]:
        """Trailing non-blank lines of the latest command output."""
        width = max(0, cols - LABEL_WIDTH)
        kept = []
        for line in text.splitlines():
            line = _CONTROL.sub("", _ANSI.sub("", line).expandtabs(4)).rstrip()
            if line:
                kept.append(line[:width])
        return [
            f"{'':<{LABEL_WIDTH - 2}}\x1b[38;5;240m│\x1b[0m {line}"
            for line in kept[-OUTPUT_LINES:]
        ]

    def render(self, snap: Snapshot, cols: int, rows: int) -> list[str]:
        """Build the frame lines for a terminal of the given size."""
        if cols < MIN_COLS or rows < MIN_ROWS:
            raise RenderError(f"Terminal too small ({cols}x{rows})")
        max_height = min(self.max_height, rows)
        graph_width = max(10, cols - LABEL_WIDTH - 2)

        lines = [
            self._build_header(cols, snap),
            self._build_bar(graph_width, snap.latest),
            self._build_status(cols, snap),
        ]

        # Layout: [header][bar][status][output][graph rows][time axis]
        output = self._build_output(cols, snap.output)
        room = max(0, max_height - len(lines))
        chart_rows = room - 1
        if chart_rows < 2 or not snap.samples:
            # Terminal is too short or nothing to chart yet
            return lines + output[len(output) - min(len(output), room) :]

        # Output rows give way to the chart first
        keep = min(len(output), chart_rows - 2)
        lines.extend(output[len(output) - keep :])
        graph_rows = chart_rows - keep

        t_end = snap.now
        span = max(t_end - snap.samples[0].timestamp, MIN_SPAN)
        values = downsample(snap.samples, t_end - span, t_end, graph_width)
        present = [v for v in values if v is not None]
        lo = min(0.0, min(present, default=0.0))
        hi = max(1.0, max(present, default=1.0))

        ticks = self._nice_y_ticks(lo, hi, graph_rows)
        row_labels = self._assign_ticks_to_rows(ticks, lo, hi, graph_rows)
        for row in range(graph_rows):
            graph_line = self._render_graph_row(values, lo, hi, row, graph_rows)
            label = row_labels.get(row, "    ")
            lines.append(f" \x1b[36m{label}\x1b[0m \x1b[33m{graph_line}\x1b[0m")

        time_axis = self._build_time_axis(graph_width, span)
        lines.append(f"{'':<{LABEL_WIDTH}}{''.join(time_axis)}")
        return lines

    def draw(self, snap: Snapshot):
        """Draw the progress block at the bottom of the terminal."""
        if not self.active:
            return
        cols, rows = self._get_terminal_size()
        lines = self.render(snap, cols, rows)
        height = min(len(lines), max(1, rows))
        progress_top = max(1, rows - height + 1)

        # Build entire frame as a single string
        buf: list[str] = []

        # On resize the old block is somewhere else: repaint from scratch
        if self._last_size is not None and self._last_size != (cols, rows):
            buf.append("\x1b[r\x1b[2J")
            self._current_scroll_bottom = None
            self._first_draw = True
        self._last_size = (cols, rows)

        # On first draw, scroll terminal up to make room for progress block
        if self._first_draw:
            self._first_draw = False
            buf.append(f"\x1b[{rows};1H" + "\n" * height)

        # Update scrolling region so other output scrolls above the progress block
        top = 1
        bottom = max(1, rows - height)
        if self._current_scroll_bottom != bottom:
            buf.append(f"\x1b[{top};{bottom}r")
            self._current_scroll_bottom = bottom

        # Paint each progress line
        for idx in range(height):
            row = progress_top + idx
            buf.append(f"\x1b[{row};1H\x1b[2K{lines[idx]}")

        # Place cursor back at the bottom of the scrolling region
        anchor_row = max(1, progress_top - 1)
        buf.append(f"\x1b[{anchor_row};1H")

        # Single atomic write
        self._write("".join(buf))
