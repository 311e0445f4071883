"""Exception taxonomy for stage execution and artifact persistence."""


class DigestError(Exception):
    """Base class for failures surfaced to the caller of a pipeline run."""


class TransportError(DigestError):
    """The generation provider could not be reached or answered with an error.

    The stage stays uncached and can be retried.
    """


class MalformedOutputError(DigestError):
    """The provider answered, but the output is empty or structurally invalid."""


class StoreError(DigestError):
    """The artifact store failed to read, write or enumerate entries."""


class StageCancelled(Exception):
    """Cooperative cancellation observed while a stage was pending or in flight.

    Not a DigestError: a cancelled stage is not a failure and must never be
    reported as one. No artifact is written for the cancelled stage.
    """

    def __init__(self, message: str = "Stage was cancelled"):
        super().__init__(message)


class RunStateError(DigestError):
    """A run was asked for a transition its current state does not allow."""
