"""Centralized constant definitions used across the runtime."""

from __future__ import annotations

RELEASE_BASE_URL = "https://github.com/ggml-org/llama.cpp/releases/download"
# llama.cpp build tag the prebuilt release archives are published under.
RELEASE_VERSION = "b6209"
DEFAULT_MODEL = "tensorblock/pygmalion-2-7b-GGUF:Q4_K_M"

INSTALL_DIR_NAME = "llamacpp"
ARCHIVE_NAME = "llamacpp.zip"
SERVER_EXECUTABLE = "llama-server"
CLI_EXECUTABLE = "llama-cli"
WINDOWS_EXECUTABLE_SUFFIX = ".exe"
# Windows archives keep the binaries at the root; the others nest them.
POSIX_BIN_SUBDIR = "build/bin"

MODEL_FLAG = "-hf"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_THREADS = 6

DEFAULT_MAX_TOKENS = 150
STOP_SEQUENCES: tuple[str, ...] = ("<|",)

HEALTH_PATH = "/health"
CHAT_PATH = "/v1/chat/completions"
COMPLETION_PATH = "/completion"

REQUEST_TIMEOUT_SECONDS = 300.0
HEALTH_TIMEOUT_SECONDS = 2.0
POLL_INTERVAL_SECONDS = 1.0
# Used when wait_until_loaded is given no positive timeout.
READINESS_CEILING_SECONDS = 99 * 60.0
FIRST_CALL_ATTEMPTS = 10
DOWNLOAD_CHUNK_SIZE = 64 * 1024

SERVER_LOG_NAME = "llama-server.log"

OS_TAGS: dict[str, str] = {
    "windows": "win",
    "macos": "macos",
    "linux": "ubuntu",
}

ARCH_TAGS: dict[str, str] = {
    "x64": "x64",
    "arm64": "arm64",
}

ACCELERATOR_TAGS: dict[str, str] = {
    "cpu": "cpu",
    "cuda": "cuda-12.4",
    "vulkan": "vulkan",
    "rocm": "hip-radeon",
    "none": "",
}

SYSTEM_ALIASES: dict[str, str] = {
    "windows": "windows",
    "darwin": "macos",
    "linux": "linux",
}

MACHINE_ALIASES: dict[str, str] = {
    "amd64": "x64",
    "x86_64": "x64",
    "x64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
}
