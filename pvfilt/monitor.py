"""Sampling and rendering threads around a shared time series."""

import enum
import logging
import signal
import threading
import time
from dataclasses import dataclass

from pvfilt.config import Policy
from pvfilt.display import ProgressDisplay, RenderError, Snapshot
from pvfilt.estimate import Estimate, Estimator
from pvfilt.sampler import FractionSampler, ParseOverflow, Sample, Sampler
from pvfilt.series import DEFAULT_CAPACITY, TimeSeries
from pvfilt.source import CommandFailed, DataSource, EndOfStream, RawBlob, SourceError
from pvfilt.utils import format_time

__all__ = ["ExitCode", "Monitor", "MonitorStats", "State"]

logger = logging.getLogger(__name__)


class State(enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    FINISHED = "finished"
    ABORTED = "aborted"


class ExitCode(enum.IntEnum):
    OK = 0
    ERROR = 1
    USAGE = 2
    SPAWN_FAILED = 3
    TIMEOUT = 4
    COMMAND_FAILED = 5
    RENDER_FAILED = 6
    INTERRUPTED = 130
    TERMINATED = 143


@dataclass
class MonitorStats:
    """Counters for the final summary."""

    cycles: int = 0
    samples: int = 0
    no_match: int = 0
    overflows: int = 0
    failures: int = 0
    elapsed: float = 0.0


class Monitor:
    """Drive a data source and a display at independent cadences.

    The sampling thread is the only writer of the series and the estimate;
    the render thread copies a snapshot of both under the same lock, so it
    never sees a half-applied update. A slow command only delays sampling.

    Args:
        source: Where raw text comes from
        display: Where frames go
        interval: Sampling period in seconds (0 for stream sources that block
            until the next line is available)
        render_interval: Display refresh period in seconds
        on_error: Whether a failed source cycle is skipped or aborts the run
        chart_samples: How many of the newest samples the chart shows
    """

    def __init__(
        self,
        source: DataSource,
        display: ProgressDisplay,
        *,
        sampler: Sampler | None = None,
        estimator: Estimator | None = None,
        capacity: int = DEFAULT_CAPACITY,
        interval: float = 1.0,
        render_interval: float = 0.1,
        on_error: Policy = Policy.CONTINUE,
        chart_samples: int | None = None,
        label: str | None = None,
    ):
        self.source = source
        self.display = display
        self.sampler = sampler or FractionSampler()
        self.estimator = estimator or Estimator()
        self.interval = interval
        self.render_interval = render_interval
        self.on_error = on_error
        self.chart_samples = chart_samples
        self.label = label if label is not None else source.describe()

        self.state = State.STARTING
        self.exit_code = ExitCode.OK
        self.stats = MonitorStats()

        self._lock = threading.RLock()  # signal handlers may re-enter
        self._series = TimeSeries(capacity)
        self._estimate = Estimate.unknown("not enough samples")
        self._status = "starting"
        self._output = ""  # text of the latest cycle
        self._started = time.monotonic()

        self._stop = threading.Event()  # both loops exit
        self._wake = threading.Event()  # redraw now
        self._threads: list[threading.Thread] = []

    # ------------------------------------------------------------------
    # Lifecycle

    def run(self) -> ExitCode:
        """Run until the source is exhausted, a fatal error, or Ctrl+C."""
        restore = self._install_signal_handlers()
        self._started = time.monotonic()
        try:
            self.display.start()
            with self._lock:
                self.state = State.RUNNING
            self._start_threads()
            # Short waits keep the main thread responsive to KeyboardInterrupt
            while not self._stop.wait(0.2):
                pass
        except RenderError as e:
            logger.error("Display failed: %s", e)
            self.stop(ExitCode.RENDER_FAILED)
        except KeyboardInterrupt:
            self.stop(ExitCode.INTERRUPTED)
        finally:
            self._shutdown()
            restore()
        return self.exit_code

    def stop(self, code: ExitCode = ExitCode.INTERRUPTED):
        """Request termination from any thread; the first reason wins."""
        with self._lock:
            if self.state in (State.FINISHED, State.ABORTED):
                return
            self.state = State.ABORTED
            self.exit_code = code
        logger.debug("Stopping (%s)", code.name)
        self._stop.set()
        self._wake.set()
        self.source.close()

    def _finish(self):
        with self._lock:
            if self.state in (State.FINISHED, State.ABORTED):
                return
            self.state = State.FINISHED
            self._status = "finished"
        logger.info("Source exhausted")
        self._stop.set()
        self._wake.set()

    def _start_threads(self):
        for name, target in (("sampler", self._sample_loop), ("render", self._render_loop)):
            t = threading.Thread(target=target, name=f"pvfilt-{name}", daemon=True)
            self._threads.append(t)
            t.start()

    def _shutdown(self):
        self._stop.set()
        self._wake.set()
        self.source.close()
        for t in self._threads:
            # A stdin reader cannot be interrupted; it is a daemon and abandoned
            t.join(timeout=1.0)
        self.stats.elapsed = time.monotonic() - self._started
        self.display.stop(self.snapshot())

    def _install_signal_handlers(self):
        """SIGWINCH redraws at once, SIGTERM stops. Main thread only."""
        if threading.current_thread() is not threading.main_thread():
            return lambda: None
        previous = {}

        def on_winch(signum, frame):
            self._wake.set()

        def on_term(signum, frame):
            self.stop(ExitCode.TERMINATED)

        handlers = {getattr(signal, "SIGWINCH", None): on_winch, signal.SIGTERM: on_term}
        for signum, handler in handlers.items():
            if signum is not None:
                previous[signum] = signal.signal(signum, handler)

        def restore():
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        return restore

    # ------------------------------------------------------------------
    # Sampling

    def _sample_loop(self):
        try:
            next_tick = time.monotonic()
            while not self._stop.is_set():
                self._sample_once()
                if self.interval > 0:
                    next_tick += self.interval
                    now = time.monotonic()
                    if next_tick < now:
                        # Skip ticks missed by a slow command instead of bunching up
                        missed = int((now - next_tick) // self.interval) + 1
                        next_tick += missed * self.interval
                    self._stop.wait(next_tick - now)
        except BaseException as e:
            logger.exception("Sampler thread exception: %s", e)
            self.stop(ExitCode.ERROR)

    def _sample_once(self):
        """One sampling cycle. Recoverable errors end here."""
        try:
            blob = self.source.produce()
        except EndOfStream:
            if not self._stop.is_set():
                self._finish()
            return
        except SourceError as e:
            if self._stop.is_set():
                return  # killed by our own shutdown
            self._source_failed(e)
            return
        if self._stop.is_set():
            return  # in-flight result after stop: discard
        self.ingest(blob)

    def ingest(self, blob: RawBlob) -> Sample | None:
        """Parse a blob and record the sample, recomputing the estimate."""
        self.stats.cycles += 1
        with self._lock:
            self._output = blob.text
        try:
            sample = self.sampler.extract(blob.text, blob.timestamp)
        except ParseOverflow as e:
            self.stats.overflows += 1
            logger.debug("Skipped cycle: %s", e)
            self._set_status(str(e))
            return None
        if sample is None:
            self.stats.no_match += 1
            logger.debug("Skipped cycle: no progress marker in output")
            self._set_status(self._outcome(blob, "no progress marker"))
            return None

        with self._lock:
            self._series.append(sample)
            self._estimate = self.estimator.estimate(self._series)
            self._status = self._outcome(blob)
            estimate = self._estimate
        self.stats.samples += 1
        remaining = estimate.remaining(sample.timestamp)
        logger.info(
            "Progress %d/%d (%.1f%%), eta %s",
            sample.numerator,
            sample.denominator,
            sample.fraction * 100,
            format_time(remaining) if remaining is not None else "unknown",
        )
        return sample

    def _source_failed(self, e: SourceError):
        self.stats.failures += 1
        with self._lock:
            self._status = str(e)
            # Spawn failures and timeouts leave no output
            self._output = e.blob.text if isinstance(e, CommandFailed) and e.blob else ""
        if self.on_error is Policy.ABORT:
            logger.error("%s %s", self.label, e)
            self.stop(ExitCode(e.exit_code))
            return
        logger.info("Skipped cycle: %s %s", self.label, e)

    def _set_status(self, status: str):
        with self._lock:
            self._status = status

    @staticmethod
    def _outcome(blob: RawBlob, note: str | None = None) -> str:
        parts = []
        if blob.returncode is not None:
            parts.append(f"exit {blob.returncode}")
        if note:
            parts.append(note)
        return ", ".join(parts)

    # ------------------------------------------------------------------
    # Rendering

    def snapshot(self) -> Snapshot:
        """Copy of the state one frame needs, taken under the lock."""
        with self._lock:
            return Snapshot(
                samples=self._series.window(last=self.chart_samples),
                latest=self._series.latest(),
                estimate=self._estimate,
                now=time.monotonic(),
                started=self._started,
                status=self._status,
                output=self._output,
                label=self.label,
                finished=self.state is State.FINISHED,
            )

    @property
    def estimate(self) -> Estimate:
        with self._lock:
            return self._estimate

    def latest(self) -> Sample | None:
        with self._lock:
            return self._series.latest()

    def _render_loop(self):
        try:
            while not self._stop.is_set():
                self.display.draw(self.snapshot())
                self._wake.wait(self.render_interval)
                self._wake.clear()
        except RenderError as e:
            logger.error("Display failed: %s", e)
            self.stop(ExitCode.RENDER_FAILED)
        except BaseException as e:
            logger.exception("Render thread exception: %s", e)
            self.stop(ExitCode.ERROR)
