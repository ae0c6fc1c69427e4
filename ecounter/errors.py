"""
Exception hierarchy for the energy counter.

Collaborators translate their own failures (vendor SDK errors, OSError,
HTTP errors) into these at the boundary. Nothing below the CLI exits the
process; the owning cycle driver decides to terminate.
"""


class EcounterError(RuntimeError):
    """Base class for every fatal accounting failure."""


class CounterReadError(EcounterError):
    """A raw counter, resolution or utilization read failed."""


class CounterError(EcounterError):
    """A counter value violates monotonicity or has an invalid resolution."""


class NodePowerError(EcounterError):
    """The node power probe failed or returned an invalid value."""


class SinkError(EcounterError):
    """An energy value could not be written to its destination."""
