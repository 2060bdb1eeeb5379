"""pvfilt - Chart the progress of commands that print ``done/total``.

This package runs a command (or reads a stream), extracts the first
``a/b`` fraction from its output, and renders a live chart, progress bar
and estimated completion time at the bottom of the terminal.
"""

__version__ = "0.1.0"

from pvfilt.estimate import Estimate, Estimator, estimate_completion
from pvfilt.sampler import FractionSampler, Sample, extract
from pvfilt.series import TimeSeries

__all__ = [
    "Estimate",
    "Estimator",
    "FractionSampler",
    "Sample",
    "TimeSeries",
    "__version__",
    "estimate_completion",
    "extract",
]
