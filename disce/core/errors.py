"""Failure taxonomy for the request pipeline.

Handling policy (applied by `disce.core.engine`):
    - `ParseRejection`, `CorrelationFailure`: silently ignored, debug log only.
    - `AnnotationFailure`: logged, aborts the current stage, never retried.
    - `GenerationFailure`, `CompositionFailure`: logged, surfaced to the user
      with the failed marker and an error reply. No partial image is sent.

None of these is fatal to the process.
"""


class DisceError(Exception):
    """Base class for pipeline failures."""


class ParseRejection(DisceError):
    """The event does not match the command grammar or is self-originated."""


class CorrelationFailure(DisceError):
    """A reaction could not be traced back to a valid command message."""


class AnnotationFailure(DisceError):
    """Adding or removing a status marker failed."""


class MarkerNotFound(DisceError):
    """The platform has no marker of ours to remove on the target message."""


class GenerationFailure(DisceError):
    """The generation endpoint did not produce a usable result.

    Attributes:
        duration: Seconds elapsed between the first attempt and the failure.
        attempts: Number of attempts issued.
    """

    def __init__(self, message: str, duration: float = 0.0, attempts: int = 0):
        super().__init__(message)
        self.duration = duration
        self.attempts = attempts

    def __str__(self):
        base = super().__str__()
        return f"{base} (after {self.attempts} attempt(s), {self.duration:.1f}s)"


class CompositionFailure(DisceError):
    """Fragments could not be decoded, merged, or encoded."""
