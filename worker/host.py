"""Resolve which prebuilt llama.cpp release matches the host platform."""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass
from enum import Enum

from worker import constants
from worker.errors import UnsupportedPlatform
from worker.settings import WorkerSettings

logger = logging.getLogger("llamahost.host")


class OperatingSystem(str, Enum):
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"


class Architecture(str, Enum):
    X64 = "x64"
    ARM64 = "arm64"


class Accelerator(str, Enum):
    """Hardware backend a release build targets."""

    CPU = "cpu"
    CUDA = "cuda"
    VULKAN = "vulkan"
    ROCM = "rocm"
    NONE = "none"

    @property
    def tag(self) -> str:
        return constants.ACCELERATOR_TAGS[self.value]


@dataclass(frozen=True)
class HostProfile:
    """Platform facts after the per-OS accelerator policy has been applied."""

    operating_system: OperatingSystem
    architecture: Architecture
    accelerator: Accelerator

    @property
    def os_tag(self) -> str:
        return constants.OS_TAGS[self.operating_system.value]

    @property
    def arch_tag(self) -> str:
        return constants.ARCH_TAGS[self.architecture.value]


def detect_operating_system(system: str | None = None) -> OperatingSystem:
    """Map a ``platform.system()`` name onto a supported operating system."""
    raw = platform.system() if system is None else system
    key = constants.SYSTEM_ALIASES.get(raw.strip().lower())
    if key is None:
        raise UnsupportedPlatform(f"unsupported operating system: {raw!r}")
    return OperatingSystem(key)


def detect_architecture(machine: str | None = None) -> Architecture:
    """Map a ``platform.machine()`` name onto a supported CPU architecture."""
    raw = platform.machine() if machine is None else machine
    key = constants.MACHINE_ALIASES.get(raw.strip().lower())
    if key is None:
        raise UnsupportedPlatform(f"unsupported cpu architecture: {raw!r}")
    return Architecture(key)


def parse_accelerator(value: Accelerator | str | None) -> Accelerator:
    """Accept an accelerator member or its name in any case; None means no preference."""
    if value is None:
        return Accelerator.NONE
    if isinstance(value, Accelerator):
        return value
    try:
        return Accelerator(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in Accelerator)
        raise UnsupportedPlatform(f"unknown accelerator {value!r} (expected one of: {choices})") from None


def select_accelerator(operating_system: OperatingSystem, requested: Accelerator | str | None) -> Accelerator:
    """Apply the per-OS build availability to a requested accelerator.

    Windows ships every variant and falls back to the CPU build, macOS ships a
    single universal build, and Linux only publishes a separate Vulkan build.
    """
    accelerator = parse_accelerator(requested)
    if operating_system is OperatingSystem.WINDOWS:
        return Accelerator.CPU if accelerator is Accelerator.NONE else accelerator
    if operating_system is OperatingSystem.LINUX and accelerator is Accelerator.VULKAN:
        return Accelerator.VULKAN
    return Accelerator.NONE


def resolve_host_profile(
    accelerator: Accelerator | str | None = None,
    *,
    system: str | None = None,
    machine: str | None = None,
) -> HostProfile:
    operating_system = detect_operating_system(system)
    architecture = detect_architecture(machine)
    return HostProfile(
        operating_system=operating_system,
        architecture=architecture,
        accelerator=select_accelerator(operating_system, accelerator),
    )


def artifact_name(profile: HostProfile, version: str) -> str:
    """Compose the release archive file name for ``profile``."""
    parts = [f"llama-{version}-bin", profile.os_tag]
    if profile.accelerator.tag:
        parts.append(profile.accelerator.tag)
    parts.append(profile.arch_tag)
    return "-".join(parts) + ".zip"


def resolve_artifact_url(
    accelerator: Accelerator | str | None = None,
    *,
    system: str | None = None,
    machine: str | None = None,
    settings: WorkerSettings | None = None,
) -> str:
    """Return the download URL of the release archive for this host."""
    settings = settings or WorkerSettings()
    profile = resolve_host_profile(accelerator, system=system, machine=machine)
    base = settings.release_base_url.rstrip("/")
    url = f"{base}/{settings.release_version}/{artifact_name(profile, settings.release_version)}"
    logger.debug("Resolved %s to %s", profile, url)
    return url


__all__ = [
    "Accelerator",
    "Architecture",
    "HostProfile",
    "OperatingSystem",
    "artifact_name",
    "detect_architecture",
    "detect_operating_system",
    "parse_accelerator",
    "resolve_artifact_url",
    "resolve_host_profile",
    "select_accelerator",
]
