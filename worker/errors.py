"""Exception hierarchy for the llama.cpp worker lifecycle."""

from __future__ import annotations


class WorkerError(RuntimeError):
    """Base exception for all worker errors."""


class UnsupportedPlatform(WorkerError):
    """Host operating system or CPU architecture has no prebuilt release."""


class BinaryMissing(WorkerError):
    """Worker executable is not installed; provisioning is required."""

    def __init__(self, path: object) -> None:
        self.path = path
        super().__init__(f"could not find llama.cpp binaries at {path}, provision the worker first")


class ProvisioningError(WorkerError):
    """Fetching or unpacking the worker release failed."""


class FetchFailed(ProvisioningError):
    """Release archive could not be downloaded."""

    def __init__(self, url: str, detail: str, status_code: int | None = None) -> None:
        self.url = url
        self.detail = detail
        self.status_code = status_code
        prefix = f"download of {url} failed"
        if status_code is not None:
            prefix += f" (status {status_code})"
        super().__init__(f"{prefix}: {detail}" if detail else prefix)


class ExtractionFailed(ProvisioningError):
    """Release archive could not be unpacked."""


class PrefetchFailed(ProvisioningError):
    """llama-cli exited with an error while fetching model weights."""

    def __init__(self, model: str, returncode: int, output: str) -> None:
        self.model = model
        self.returncode = returncode
        self.output = output
        super().__init__(f"prefetch of {model} failed with exit code {returncode}")


class WorkerStateError(WorkerError):
    """Operation is not valid in the supervisor's current lifecycle state."""


class ReadinessTimeout(WorkerError):
    """Worker did not answer its health check before the deadline."""


class WorkerExited(WorkerError):
    """Worker process terminated while it was expected to be loading."""

    def __init__(self, returncode: int | None) -> None:
        self.returncode = returncode
        super().__init__(f"llama-server exited before becoming ready (code={returncode})")


class WorkerUnavailable(WorkerError):
    """First-call readiness retries were exhausted."""


class RequestFailed(WorkerError):
    """Worker answered with an error instead of a completion."""


class ResponseMalformed(WorkerError):
    """Worker answered with JSON that does not match the endpoint's schema."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


__all__ = [
    "BinaryMissing",
    "ExtractionFailed",
    "FetchFailed",
    "PrefetchFailed",
    "ProvisioningError",
    "ReadinessTimeout",
    "RequestFailed",
    "ResponseMalformed",
    "UnsupportedPlatform",
    "WorkerError",
    "WorkerExited",
    "WorkerStateError",
    "WorkerUnavailable",
]
