"""Error taxonomy for the memory subsystem."""

from typing import Iterable, List


class DiaryMemoryError(Exception):
    """Base class for all memory subsystem errors."""


class ValidationError(DiaryMemoryError):
    """
    Input rejected before any write happened.

    Always carries the complete list of problems found, never just the first.
    """

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "validation failed")


class NotFoundError(DiaryMemoryError):
    """Raised by explicit lookups (``require``) when a row does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class ExternalCallFailure(DiaryMemoryError):
    """An external proposer (text generation) call failed."""


class ExtractionFailed(ExternalCallFailure):
    """The extraction proposer could not produce candidate memories."""


class ConsolidationProposalFailed(ExternalCallFailure):
    """The consolidation proposer could not produce a plan."""
