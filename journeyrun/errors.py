"""Error taxonomy for journeyrun.

- InitializationError: a run or journey graph could not be loaded.
- GraphIntegrityError: a journey graph is structurally invalid.
- RecordNotFoundError: a requested run or journey does not exist.
- PersistenceWriteError: a Run or BlockState write failed.

Missing facts and unknown block types are deliberately not errors.
"""


class JourneyError(Exception):
    """Base class for all journeyrun errors."""


class InitializationError(JourneyError):
    """A run or its journey graph could not be loaded.

    The caller may retry or exit; nothing else in the app is affected.
    """

    retryable = True


class GraphIntegrityError(InitializationError):
    """A journey graph failed validation at load time."""

    retryable = False

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid journey graph: " + "; ".join(self.problems))


class PersistenceWriteError(JourneyError):
    """A write to the run/block-state store failed.

    Not retried automatically, so storage may lag behind the session.
    """


class RecordNotFoundError(InitializationError):
    """A run or journey the caller asked for does not exist."""
