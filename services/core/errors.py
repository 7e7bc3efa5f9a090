"""Error taxonomy shared by the ledger and replay services."""


class LedgerError(Exception):
    """Base class for all ledger errors."""


class CanonicalizationError(LedgerError):
    """Value cannot be put into canonical form (cycle, unsupported type)."""


class EventValidationError(LedgerError):
    """Event shape is invalid for its type."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class DecodeError(LedgerError):
    """A single feed message could not be turned into an event."""

    def __init__(self, message: str, consensus_timestamp: str | None = None):
        super().__init__(message)
        self.consensus_timestamp = consensus_timestamp


class PublishError(LedgerError):
    """The ledger rejected a submission or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FeedUnavailableError(LedgerError):
    """Mirror feed returned a non-success status or failed in transport."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransitionRejectedError(LedgerError):
    """Command would produce a transition the state machine does not allow."""

    def __init__(self, message: str, kind: str):
        super().__init__(message)
        self.kind = kind
