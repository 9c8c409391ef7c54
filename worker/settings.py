"""Worker settings resolved from the settings file, the environment and defaults."""

from __future__ import annotations

import os
import platform
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from worker import constants
from worker.config import load_settings


def _parse_float(value: Any, default: float) -> float:
    if value in (None, ""):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_int(value: Any, default: int) -> int:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_args(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(shlex.split(value))
    if isinstance(value, Sequence):
        return tuple(str(arg) for arg in value)
    return ()


def _get_setting(settings: dict[str, Any], key: str, env_var: str, default: Any = None) -> Any:
    value = settings.get(key)
    if value not in (None, ""):
        return value
    env_value = os.getenv(env_var)
    if env_value not in (None, ""):
        return env_value
    return default


def _get_exact_setting(settings: dict[str, Any], key: str, env_var: str, default: str) -> str:
    # An empty string counts as set.
    if settings.get(key) is not None:
        return str(settings[key])
    env_value = os.environ.get(env_var)
    if env_value is not None:
        return env_value
    return default


def _on_windows() -> bool:
    return platform.system().lower() == "windows"


def default_executable_suffix() -> str:
    """Return the executable suffix used by the host's release archives."""
    return constants.WINDOWS_EXECUTABLE_SUFFIX if _on_windows() else ""


def default_bin_subdir() -> str:
    """Return where the host's release archive keeps its executables."""
    return "" if _on_windows() else constants.POSIX_BIN_SUBDIR


@dataclass(frozen=True)
class WorkerSettings:
    """Everything the resolver, provisioner, supervisor and client need to know."""

    release_base_url: str = constants.RELEASE_BASE_URL
    release_version: str = constants.RELEASE_VERSION
    install_dir: Path = Path(constants.INSTALL_DIR_NAME)
    archive_name: str = constants.ARCHIVE_NAME
    server_executable: str = constants.SERVER_EXECUTABLE
    cli_executable: str = constants.CLI_EXECUTABLE
    executable_suffix: str = field(default_factory=default_executable_suffix)
    bin_subdir: str = field(default_factory=default_bin_subdir)
    model: str = constants.DEFAULT_MODEL
    model_flag: str = constants.MODEL_FLAG
    host: str = constants.DEFAULT_HOST
    port: int = constants.DEFAULT_PORT
    threads: int = constants.DEFAULT_THREADS
    extra_args: tuple[str, ...] = ()
    max_tokens: int = constants.DEFAULT_MAX_TOKENS
    stop_sequences: tuple[str, ...] = constants.STOP_SEQUENCES
    request_timeout: float = constants.REQUEST_TIMEOUT_SECONDS
    health_timeout: float = constants.HEALTH_TIMEOUT_SECONDS
    poll_interval: float = constants.POLL_INTERVAL_SECONDS
    readiness_ceiling: float = constants.READINESS_CEILING_SECONDS
    first_call_attempts: int = constants.FIRST_CALL_ATTEMPTS
    download_chunk_size: int = constants.DOWNLOAD_CHUNK_SIZE
    log_dir: Path | None = None

    @property
    def bin_dir(self) -> Path:
        """Directory inside the install dir that holds the release executables."""
        root = Path(self.install_dir).absolute()
        return root / self.bin_subdir if self.bin_subdir else root

    @property
    def server_path(self) -> Path:
        """Absolute path of the llama-server executable."""
        return self.bin_dir / f"{self.server_executable}{self.executable_suffix}"

    @property
    def cli_path(self) -> Path:
        """Absolute path of the llama-cli executable used for model prefetch."""
        return self.bin_dir / f"{self.cli_executable}{self.executable_suffix}"

    @property
    def archive_path(self) -> Path:
        return Path(self.install_dir).absolute() / self.archive_name

    def base_url(self, port: int | None = None) -> str:
        """Return the loopback base URL for a worker bound to ``port``."""
        return f"http://{self.host}:{port if port is not None else self.port}"

    @classmethod
    def load(cls) -> "WorkerSettings":
        settings = load_settings()

        def getter(key: str, env: str, default: Any = None) -> Any:
            return _get_setting(settings, key, env, default)

        defaults = cls()
        install_dir = Path(str(getter("install_dir", "LLAMA_INSTALL_DIR", constants.INSTALL_DIR_NAME)))
        log_dir_raw = str(getter("log_dir", "LLAMA_LOG_DIR", "") or "").strip()
        stop_raw = getter("stop_sequences", "LLAMA_STOP_SEQUENCES")
        stop_sequences = _parse_args(stop_raw) if stop_raw else defaults.stop_sequences

        return cls(
            release_base_url=str(getter("release_base_url", "LLAMA_RELEASE_BASE_URL", defaults.release_base_url)).rstrip("/"),
            release_version=str(getter("release_version", "LLAMA_RELEASE_VERSION", defaults.release_version)),
            install_dir=install_dir.expanduser(),
            archive_name=str(getter("archive_name", "LLAMA_ARCHIVE_NAME", defaults.archive_name)),
            server_executable=str(getter("server_executable", "LLAMA_SERVER_EXECUTABLE", defaults.server_executable)),
            cli_executable=str(getter("cli_executable", "LLAMA_CLI_EXECUTABLE", defaults.cli_executable)),
            executable_suffix=_get_exact_setting(
                settings, "executable_suffix", "LLAMA_EXECUTABLE_SUFFIX", defaults.executable_suffix
            ),
            bin_subdir=_get_exact_setting(
                settings, "bin_subdir", "LLAMA_BIN_SUBDIR", defaults.bin_subdir
            ).strip("/\\"),
            model=str(getter("model", "LLAMA_MODEL", defaults.model)),
            model_flag=str(getter("model_flag", "LLAMA_MODEL_FLAG", defaults.model_flag)),
            host=str(getter("host", "LLAMA_SERVER_HOST", defaults.host)),
            port=_parse_int(getter("port", "LLAMA_SERVER_PORT"), defaults.port),
            threads=_parse_int(getter("threads", "LLAMA_THREADS"), defaults.threads),
            extra_args=_parse_args(getter("server_args", "LLAMA_SERVER_ARGS", "")),
            max_tokens=_parse_int(getter("max_tokens", "LLAMA_MAX_TOKENS"), defaults.max_tokens),
            stop_sequences=stop_sequences,
            request_timeout=_parse_float(getter("request_timeout", "LLAMA_REQUEST_TIMEOUT"), defaults.request_timeout),
            health_timeout=_parse_float(getter("health_timeout", "LLAMA_HEALTH_TIMEOUT"), defaults.health_timeout),
            poll_interval=_parse_float(getter("poll_interval", "LLAMA_POLL_INTERVAL"), defaults.poll_interval),
            readiness_ceiling=_parse_float(
                getter("readiness_ceiling", "LLAMA_READINESS_CEILING"),
                defaults.readiness_ceiling,
            ),
            first_call_attempts=_parse_int(
                getter("first_call_attempts", "LLAMA_FIRST_CALL_ATTEMPTS"),
                defaults.first_call_attempts,
            ),
            download_chunk_size=_parse_int(
                getter("download_chunk_size", "LLAMA_DOWNLOAD_CHUNK_SIZE"),
                defaults.download_chunk_size,
            ),
            log_dir=Path(log_dir_raw).expanduser() if log_dir_raw else None,
        )


def clear_settings_cache() -> None:
    """Reset the cached settings loader."""
    load_settings.cache_clear()


__all__ = ["WorkerSettings", "clear_settings_cache", "default_bin_subdir", "default_executable_suffix"]
