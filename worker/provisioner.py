"""Download and unpack prebuilt llama.cpp releases into the install directory."""

from __future__ import annotations

import logging
import shutil
import stat
import subprocess
import zipfile
from pathlib import Path

import httpx

from worker.errors import BinaryMissing, ExtractionFailed, FetchFailed, PrefetchFailed
from worker.host import Accelerator, resolve_artifact_url
from worker.settings import WorkerSettings

logger = logging.getLogger("llamahost.provisioner")


def worker_installed(settings: WorkerSettings) -> bool:
    """Existence check only; the installed build is never inspected."""
    return settings.server_path.exists()


class ArtifactProvisioner:
    """Fetch the worker release matching this host.

    Provisioning wipes the install directory first, so two provisioners must
    never run against the same directory at once.
    """

    def __init__(
        self,
        settings: WorkerSettings | None = None,
        *,
        http_client: httpx.Client | None = None,
        system: str | None = None,
        machine: str | None = None,
    ) -> None:
        self.settings = settings or WorkerSettings()
        self._http_client = http_client
        self._system = system
        self._machine = machine

    @property
    def install_dir(self) -> Path:
        return Path(self.settings.install_dir).absolute()

    def worker_present(self) -> bool:
        return worker_installed(self.settings)

    def artifact_url(self, accelerator: Accelerator | str | None = None) -> str:
        return resolve_artifact_url(
            accelerator,
            system=self._system,
            machine=self._machine,
            settings=self.settings,
        )

    def provision(self, accelerator: Accelerator | str | None = None) -> Path:
        """Reset the install directory, download the release and unpack it."""
        url = self.artifact_url(accelerator)
        self._reset_install_dir()
        archive_path = self.settings.archive_path
        self.download(url, archive_path)
        self.extract(archive_path, self.install_dir)
        logger.info("llama.cpp %s installed at %s", self.settings.release_version, self.install_dir)
        return self.install_dir

    def download(self, url: str, destination: Path) -> Path:
        """Stream ``url`` into ``destination`` chunk by chunk."""
        logger.info("Downloading %s", url)
        client = self._http_client or httpx.Client(timeout=httpx.Timeout(30.0, read=None))
        try:
            with client.stream("GET", url, follow_redirects=True) as response:
                if response.status_code >= 300:
                    detail = response.read().decode("utf-8", errors="replace").strip()
                    raise FetchFailed(url, detail, status_code=response.status_code)
                with destination.open("wb") as handle:
                    for chunk in response.iter_bytes(self.settings.download_chunk_size):
                        handle.write(chunk)
        except httpx.HTTPError as exc:
            raise FetchFailed(url, str(exc)) from exc
        finally:
            if self._http_client is None:
                client.close()
        logger.info("Saved %s (%s bytes)", destination, destination.stat().st_size)
        return destination

    @staticmethod
    def extract(archive_path: Path, target_dir: Path) -> list[Path]:
        """Unpack every archive entry under ``target_dir``, keeping relative paths."""
        root = Path(target_dir).absolute()
        written: list[Path] = []
        try:
            with zipfile.ZipFile(archive_path) as archive:
                for info in archive.infolist():
                    destination = (root / info.filename).resolve()
                    if destination != root.resolve() and root.resolve() not in destination.parents:
                        raise ExtractionFailed(f"archive entry {info.filename!r} escapes {root}")
                    if info.is_dir():
                        destination.mkdir(parents=True, exist_ok=True)
                        continue
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(info) as source, destination.open("wb") as handle:
                        shutil.copyfileobj(source, handle)
                    mode = (info.external_attr >> 16) & 0o777
                    if mode:
                        destination.chmod(mode | stat.S_IRUSR | stat.S_IWUSR)
                    written.append(destination)
        except zipfile.BadZipFile as exc:
            raise ExtractionFailed(f"{archive_path} is not a valid zip archive: {exc}") from exc
        except OSError as exc:
            raise ExtractionFailed(f"failed to extract {archive_path}: {exc}") from exc
        logger.info("Extracted %s files into %s", len(written), root)
        return written

    def prefetch_model(self, model: str | None = None) -> str:
        """Let llama-cli download and cache ``model`` by generating one token."""
        model = model or self.settings.model
        cli_path = self.settings.cli_path
        if not cli_path.exists():
            raise BinaryMissing(cli_path)
        command = [str(cli_path), self.settings.model_flag, model, "-n", "1", "-no-cnv"]
        logger.info("Prefetching model %s", model)
        result = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
        output = result.stdout.decode("utf-8", errors="replace")
        for line in output.splitlines():
            logger.debug("[llama-cli] %s", line)
        if result.returncode != 0:
            raise PrefetchFailed(model, result.returncode, output)
        return output

    def _reset_install_dir(self) -> None:
        root = self.install_dir
        try:
            if root.exists():
                logger.info("Removing previous install at %s", root)
                shutil.rmtree(root)
            root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExtractionFailed(f"failed to reset {root}: {exc}") from exc


__all__ = ["ArtifactProvisioner", "worker_installed"]
