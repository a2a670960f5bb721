from __future__ import annotations


class CoverageReportError(Exception):
    context: str = "unknown"


class DecodeError(CoverageReportError):
    """Inbound webhook payload could not be turned into an event."""

    context = "decode"


class UnsupportedEvent(DecodeError):
    kind: str | None

    def __init__(self, kind: str | None):
        self.kind = kind
        super().__init__(f"Unsupported event kind {kind!r}")


class ResolutionError(CoverageReportError):
    """Base and head commit of a merge request could not be determined."""

    context = "resolve"


class FetchError(CoverageReportError):
    """Coverage of a job could not be retrieved."""

    context = "fetch"


class StoreError(CoverageReportError):
    """A store transaction failed and was rolled back."""

    context = "store"


class PostError(CoverageReportError):
    """Creating or updating the merge request note failed."""

    context = "post"
