"""Local llama.cpp worker: release resolution, provisioning, supervision and requests."""

from .client import InferenceClient
from .errors import (
    BinaryMissing,
    ExtractionFailed,
    FetchFailed,
    PrefetchFailed,
    ProvisioningError,
    ReadinessTimeout,
    RequestFailed,
    ResponseMalformed,
    UnsupportedPlatform,
    WorkerError,
    WorkerExited,
    WorkerStateError,
    WorkerUnavailable,
)
from .host import Accelerator, Architecture, HostProfile, OperatingSystem, resolve_artifact_url
from .provisioner import ArtifactProvisioner
from .retry import RetryPolicy
from .schemas import ChatMessage
from .settings import WorkerSettings
from .supervisor import WorkerState, WorkerSupervisor

__all__ = [
    "Accelerator",
    "Architecture",
    "ArtifactProvisioner",
    "BinaryMissing",
    "ChatMessage",
    "ExtractionFailed",
    "FetchFailed",
    "HostProfile",
    "InferenceClient",
    "OperatingSystem",
    "PrefetchFailed",
    "ProvisioningError",
    "ReadinessTimeout",
    "RequestFailed",
    "ResponseMalformed",
    "RetryPolicy",
    "UnsupportedPlatform",
    "WorkerError",
    "WorkerExited",
    "WorkerSettings",
    "WorkerState",
    "WorkerStateError",
    "WorkerSupervisor",
    "WorkerUnavailable",
    "resolve_artifact_url",
]
