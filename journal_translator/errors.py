"""Exceptions raised inside the batch translation pipeline."""


class BatchTranslationError(Exception):
    """Base class for fatal errors of a single batch call."""


class UploadError(BatchTranslationError):
    pass


class JobCreationError(BatchTranslationError):
    pass


class PollingError(BatchTranslationError):
    """The status request itself failed (not a job failure)."""


class BatchJobFailedError(BatchTranslationError):
    """The job reached a terminal status other than 'completed'."""

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Batch job failed with status: {status}")


class BatchTimeoutError(BatchTranslationError):
    def __init__(self, elapsed_seconds: float):
        self.elapsed_seconds = elapsed_seconds
        minutes = round(elapsed_seconds / 60)
        super().__init__(f"Batch job timed out after {minutes} minutes.")


class DownloadError(BatchTranslationError):
    pass


class ResultParseError(BatchTranslationError):
    pass
