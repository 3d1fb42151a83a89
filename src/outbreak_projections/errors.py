# src/outbreak_projections/errors.py
"""Exceptions raised by the outbreak_projections pipeline.

All of them subclass ValueError so callers that already guard numeric input
with ``except ValueError`` keep working.
"""


class OutbreakModelError(ValueError):
    """Base class for every error raised by this package."""


class InvalidCountError(OutbreakModelError):
    """A case count is negative, non-integral or inconsistent."""


class InsufficientDataError(OutbreakModelError):
    """A growth segment has fewer than 2 non-zero observations."""


class InvalidSplitError(OutbreakModelError):
    """The split date lies outside the incidence series."""


class DegenerateFitError(OutbreakModelError):
    """R conversion was attempted on a growth fit that never succeeded."""


class InsufficientHistoryError(OutbreakModelError):
    """Not enough observations for the windowed R estimator."""


class InvalidParameterError(OutbreakModelError):
    """Bad model parameter (serial interval, bounds, horizon...)."""
