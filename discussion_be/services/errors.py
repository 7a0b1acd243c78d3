"""
Domain exceptions for the discussion session pipeline.

Services raise these; routers translate them into HTTP responses.
AlreadyHandled is not a failure: it marks a lost race or a repeated
event and is reported to callers as an informational outcome.
"""


class DiscussionError(Exception):
    """Base class for every error raised by the services package."""


class SessionNotFound(DiscussionError):
    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Session not found: {ref}")


class InvalidTransition(DiscussionError):
    """
    Raised when a requested status change is not in the allowed adjacency
    set. The stored status is left untouched.
    """

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition: {current} -> {target}")


class MissingFields(DiscussionError):
    def __init__(self, fields):
        self.fields = list(fields)
        super().__init__("Missing required fields: " + ", ".join(self.fields))


class PreconditionFailed(DiscussionError):
    """Caller data is present but inconsistent with the session state."""


class SessionFull(PreconditionFailed):
    def __init__(self, session_code, limit):
        self.session_code = session_code
        self.limit = limit
        super().__init__(f"Session {session_code} is full ({limit} participants)")


class RecordingProviderError(DiscussionError):
    """
    Acquire/start call to the recording provider failed.

    Fatal for the recording of one mode, never for the discussion itself.
    """

    def __init__(self, message, status_code=None, details=None):
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class RecordingStopError(RecordingProviderError):
    """Stop call answered with a non-success status; details carry the provider body."""


class InvalidScoringResponse(DiscussionError):
    def __init__(self, message, raw=None):
        self.raw = raw
        super().__init__(message)


class AlreadyHandled(DiscussionError):
    """A concurrent caller (or an earlier delivery) already did this work."""

    def __init__(self, message="already handled"):
        super().__init__(message)
