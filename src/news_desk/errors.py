"""Exceptions raised across the news desk pipeline."""


class NewsDeskError(Exception):
    """Base class for domain errors."""


class RecordNotFound(NewsDeskError, KeyError):
    """No record with the given id (or index) exists in the current store."""

    def __str__(self) -> str:
        return self.args[0] if self.args else "Record not found."


class TaskAlreadyRunning(NewsDeskError):
    """An enrichment of the same kind is already in flight for the record."""


class EnrichmentError(NewsDeskError):
    """The external AI call failed; the store was left untouched.

    ``cost`` is what the failed call was still billed (0.0 when no response came back).
    """

    def __init__(self, message: str, cost: float = 0.0):
        super().__init__(message)
        self.cost = cost


class PublishStateError(NewsDeskError):
    """A staged report was edited or addressed in a state that forbids it."""


class MissingCredential(NewsDeskError):
    """Publishing was approved without a GitHub credential."""


class GitHubPublishError(NewsDeskError):
    """The remote content store rejected a write."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
