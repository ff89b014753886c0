from __future__ import annotations


class CammeasureError(Exception):
    """Base class for measurement pipeline errors."""


class InvalidInputError(CammeasureError, ValueError):
    """Malformed frame or calibration; aborts the call."""


class ProcessingDegraded(CammeasureError):
    """A stage produced an empty or low-quality intermediate result.

    Raised inside the pipeline to switch to the fallback path. It is never
    surfaced to callers of ``SilhouettePipeline.detect``.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StageTimeout(ProcessingDegraded):
    """A stage overran its deadline."""


class ExternalEngineUnavailable(CammeasureError):
    """An optional detector backend failed to import, initialise or run."""
