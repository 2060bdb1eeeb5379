"""Progress extraction: find the first ``a/b`` fraction in a blob of text."""

import re
from dataclasses import dataclass
from typing import Protocol

__all__ = [
    "FractionSampler",
    "ParseOverflow",
    "Sample",
    "Sampler",
    "extract",
]

# Counters wider than this are treated as garbage rather than progress
MAX_VALUE = 2**64 - 1
_MAX_DIGITS = len(str(MAX_VALUE))

# Denominator must contain a non-zero digit: "0/0" is not a progress marker
FRACTION_PATTERN = re.compile(r"([0-9]+)/(0*[1-9][0-9]*)")


class ParseOverflow(ValueError):
    """The matched digits do not fit a progress counter."""


@dataclass(frozen=True)
class Sample:
    """One progress observation. Fraction is not clamped to [0, 1]."""

    timestamp: float
    numerator: int
    denominator: int

    @property
    def fraction(self) -> float:
        return self.numerator / self.denominator


class Sampler(Protocol):
    def extract(self, text: str, timestamp: float = 0.0) -> Sample | None: ...


class FractionSampler:
    """Leftmost-match extraction of ``<numerator>/<denominator>``.

    Returns None when the text carries no progress marker, which is the
    normal case for many command outputs and not an error.
    """

    pattern = FRACTION_PATTERN

    def extract(self, text: str, timestamp: float = 0.0) -> Sample | None:
        m = self.pattern.search(text)
        if m is None:
            return None
        num, den = m.groups()
        return Sample(timestamp, _to_int(num), _to_int(den))


def _to_int(digits: str) -> int:
    stripped = digits.lstrip("0") or "0"
    # Length check first: int() refuses very long digit strings anyway
    if len(stripped) > _MAX_DIGITS or int(stripped) > MAX_VALUE:
        raise ParseOverflow(f"Progress value too large: {digits[:24]}")
    return int(stripped)


_default = FractionSampler()


def extract(text: str, timestamp: float = 0.0) -> Sample | None:
    """Extract a sample using the default fraction pattern."""
    return _default.extract(text, timestamp)
