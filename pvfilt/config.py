"""Resolved run configuration."""

import enum
from dataclasses import dataclass, field

__all__ = ["Config", "Mode", "Policy"]


class Mode(enum.Enum):
    WATCH = "watch"  # rerun the command periodically
    RUN_ONCE = "run-once"  # run once, sample each output line
    PIPE = "pipe"  # sample each line of stdin


class Policy(enum.Enum):
    """What a failed source cycle does to the run."""

    CONTINUE = "continue"
    ABORT = "abort"


@dataclass
class Config:
    mode: Mode = Mode.WATCH
    command: list[str] = field(default_factory=list)
    interval: float = 1.0
    render_interval: float = 0.1
    timeout: float | None = None
    on_error: Policy = Policy.CONTINUE
    capacity: int = 1000
    eta_window: float | None = 300.0
    eta_samples: int = 240
    min_samples: int = 2
    max_height: int = 16
    quiet: bool = False
    verbose: int = 0

    def validate(self):
        """Raise ValueError describing the first invalid setting."""
        if self.mode is Mode.PIPE:
            if self.command:
                raise ValueError("Pipe mode reads stdin and takes no command")
        elif not self.command:
            raise ValueError(f"{self.mode.value} mode needs a command (after --)")
        if self.interval <= 0:
            raise ValueError("Interval must be positive")
        if self.render_interval <= 0:
            raise ValueError("Refresh interval must be positive")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("Timeout must be positive")
        if self.capacity < 2:
            raise ValueError("Capacity must be at least 2 samples")
        if self.eta_window is not None and self.eta_window <= 0:
            raise ValueError("ETA window must be positive")
        if self.min_samples < 2:
            raise ValueError("At least 2 samples are needed for an estimate")
        if self.eta_samples < self.min_samples:
            raise ValueError("ETA sample cap is below the minimum sample count")
        if self.max_height < 3:
            raise ValueError("Display height must be at least 3 rows")
        return self
