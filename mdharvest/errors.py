"""Error taxonomy for page retrieval and quality gating."""


class HarvestError(Exception):
    """Base class for errors raised while harvesting a single path."""


class FetchTimeout(HarvestError):
    """Navigation did not reach its wait condition before the timeout."""


class FetchFailure(HarvestError):
    """Navigation or network fault other than a timeout."""


class NotFound(HarvestError):
    """The resolved page signals a missing document and no other strategy had content."""


class EmptyContent(HarvestError):
    """Every strategy tried returned no usable article."""


class ShortContent(HarvestError):
    """An article was extracted but is too short to save."""

    def __init__(self, length: int, threshold: int) -> None:
        super().__init__(f"Content too short: {length} chars (< {threshold})")
        self.length = length
        self.threshold = threshold


class WorkerPoolError(RuntimeError):
    """A worker failed outside item processing (e.g. could not open its session)."""

    def __init__(self, worker_id: int, cause: BaseException) -> None:
        super().__init__(f"Worker {worker_id} failed: {cause}")
        self.worker_id = worker_id
        self.cause = cause
