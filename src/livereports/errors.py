"""Exceptions shared by the hub, the HTTP API and the client."""


class UnknownReportKind(ValueError):
    """Raised when a report kind is outside the supported set."""

    def __init__(self, kind: str):
        super().__init__(f"Unknown report type: {kind!r}")
        self.kind = kind


class ReportProviderError(Exception):
    """Raised when the external reporting service fails to produce a report."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind


class RemoteInvocationError(Exception):
    """Raised on the client when the hub answers an invoke with an error."""
