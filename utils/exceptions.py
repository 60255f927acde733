"""
Error taxonomy for the tender intake and enrichment pipeline
"""


class TenderPipelineError(Exception):
    """Base class for pipeline errors"""


class DownloadError(TenderPipelineError):
    """Bundle could not be downloaded (non-2xx or transport failure). Fatal for acquisition."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"{message} (url={url}, status={status_code})")


class ArchiveError(DownloadError):
    """Downloaded bundle is not a readable archive"""

    def __init__(self, url: str, message: str):
        super().__init__(url, message, status_code=None)


class ConversionError(TenderPipelineError):
    """A single file failed to convert. Recoverable: the file is skipped."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class ExtractionParseError(TenderPipelineError):
    """Structured extraction output had no valid fenced JSON block"""


class GatewayError(TenderPipelineError):
    """External service call failed; callers treat it as an empty result"""


class GatewayTimeout(GatewayError):
    """External service call did not finish within its timeout"""


class GatewayFailure(GatewayError):
    """External service call returned an error or unusable response"""


class StoreWriteError(TenderPipelineError):
    """A checkpoint could not be persisted; the stage must be considered failed"""

    def __init__(self, key: str, operation: str, message: str):
        self.key = key
        self.operation = operation
        super().__init__(f"{operation} failed for tender {key}: {message}")


class PipelineCancelled(TenderPipelineError):
    """Run was cancelled; no new work is dispatched"""


# Plain-language messages surfaced to users per failed stage
STAGE_FAILURE_MESSAGES = {
    "download": "document download/unpack failed",
    "extraction": "no structured analysis produced",
    "report": "no final report produced",
    "store": "analysis progress could not be saved",
    "cancelled": "analysis was cancelled",
    "not_found": "tender not found",
}
