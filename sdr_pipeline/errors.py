"""Exception hierarchy for the call pipeline.

Capability failures (model faults, timeouts, malformed output) are caught at
stage boundaries and recorded on the affected rows. Everything else signals a
caller or programming error and propagates.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    pass


class CapabilityError(PipelineError):
    """An injected capability (split, classify, grade) failed."""

    pass


class CapabilityTimeout(CapabilityError):
    """A capability call did not return within its time limit."""

    pass


class MalformedOutputError(CapabilityError):
    """A capability returned output that does not fit the expected contract."""

    pass


class GradingError(CapabilityError):
    """A grade result was produced but is unusable (e.g. empty coaching notes)."""

    pass


class ConsistencyError(PipelineError):
    """Persisted state contradicts a pipeline invariant."""

    pass


class InvalidStatusTransition(PipelineError):
    """A transcript status change that the status machine does not allow."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move transcript from '{current}' to '{requested}'")


class AlreadyProcessingError(PipelineError):
    """Another run currently owns the transcript."""

    def __init__(self, transcript_id: str):
        self.transcript_id = transcript_id
        super().__init__(f"Transcript {transcript_id} is already processing")


class NotRetryableError(PipelineError):
    """The transcript is not in a state that can be retried."""

    pass


class NotFoundError(PipelineError):
    """A requested transcript, call or grade does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")
