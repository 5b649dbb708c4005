"""Exception hierarchy for the sequencer.

Only conditions that cannot be handled as ordinary results are exceptions.
Infeasible plans, timeouts and rejected executions travel as values
(:class:`~stepwise.control.motion_helpers.FailureKind`).
"""

from __future__ import annotations


class StepwiseError(Exception):
    """Base class for all sequencer errors."""


class ConfigError(StepwiseError):
    """A configuration record is missing a field or has a malformed value."""


class FrameUnavailable(StepwiseError):
    """A transform between two frames is not currently known.

    Raised by transform services. Primitives catch it and report
    ``FailureKind.FRAME_UNAVAILABLE`` instead of propagating it.
    """

    def __init__(self, target_frame: str, source_frame: str, reason: str = "") -> None:
        self.target_frame = target_frame
        self.source_frame = source_frame
        msg = f"No transform from '{source_frame}' to '{target_frame}'"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
