"""Provisioning tests using an in-memory release host."""

from __future__ import annotations

import io
import os
import stat
import tempfile
import unittest
import zipfile
from pathlib import Path

import httpx

from worker.errors import BinaryMissing, ExtractionFailed, FetchFailed, PrefetchFailed
from worker.provisioner import ArtifactProvisioner
from worker.settings import WorkerSettings

RELEASE_URL = "https://github.com/ggml-org/llama.cpp/releases/download/b6209/llama-b6209-bin-ubuntu-x64.zip"


def build_archive(entries: dict[str, bytes], *, modes: dict[str, int] | None = None) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            info = zipfile.ZipInfo(name)
            mode = (modes or {}).get(name)
            if mode is not None:
                info.external_attr = mode << 16
            archive.writestr(info, data)
    return buffer.getvalue()


class ReleaseHost:
    def __init__(self, body: bytes, status_code: int = 200) -> None:
        self.body = body
        self.status_code = status_code
        self.urls: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.urls.append(str(request.url))
        return httpx.Response(self.status_code, content=self.body)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


class ArtifactProvisionerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.install_dir = self.root / "llamacpp"
        self.settings = WorkerSettings(
            install_dir=self.install_dir,
            executable_suffix="",
            bin_subdir="",
            download_chunk_size=7,
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _provisioner(self, host: ReleaseHost) -> ArtifactProvisioner:
        return ArtifactProvisioner(self.settings, http_client=host.client(), system="Linux", machine="x86_64")

    def test_worker_present_is_an_existence_check(self) -> None:
        provisioner = ArtifactProvisioner(self.settings)
        self.assertFalse(provisioner.worker_present())
        self.install_dir.mkdir()
        (self.install_dir / "llama-server").write_bytes(b"")
        self.assertTrue(provisioner.worker_present())

    def test_provision_resets_directory_and_extracts(self) -> None:
        self.install_dir.mkdir()
        (self.install_dir / "stale.txt").write_text("old build", encoding="utf-8")
        (self.install_dir / "old").mkdir()
        (self.install_dir / "old" / "lib.so").write_bytes(b"x")
        body = build_archive(
            {
                "llama-server": b"server-binary",
                "lib/": b"",
                "lib/nested/libggml.so": b"ggml",
            }
        )
        host = ReleaseHost(body)
        installed = self._provisioner(host).provision()

        self.assertEqual(host.urls, [RELEASE_URL])
        self.assertEqual(installed, self.install_dir.absolute())
        self.assertFalse((self.install_dir / "stale.txt").exists())
        self.assertFalse((self.install_dir / "old").exists())
        self.assertEqual((self.install_dir / "llama-server").read_bytes(), b"server-binary")
        self.assertEqual((self.install_dir / "lib" / "nested" / "libggml.so").read_bytes(), b"ggml")
        self.assertEqual((self.install_dir / "llamacpp.zip").read_bytes(), body)
        self.assertTrue(ArtifactProvisioner(self.settings).worker_present())

    def test_nested_release_layout_is_found_after_provision(self) -> None:
        settings = WorkerSettings(install_dir=self.install_dir, executable_suffix="", bin_subdir="build/bin")
        body = build_archive(
            {
                "build/bin/llama-server": b"server-binary",
                "build/bin/llama-cli": b"cli-binary",
            }
        )
        host = ReleaseHost(body)
        provisioner = ArtifactProvisioner(settings, http_client=host.client(), system="Linux", machine="x86_64")
        self.assertFalse(provisioner.worker_present())
        provisioner.provision()
        self.assertTrue(provisioner.worker_present())
        self.assertEqual(settings.server_path, self.install_dir.absolute() / "build" / "bin" / "llama-server")
        self.assertEqual(settings.cli_path.read_bytes(), b"cli-binary")

    def test_vulkan_request_selects_vulkan_archive(self) -> None:
        host = ReleaseHost(build_archive({"llama-server": b""}))
        self._provisioner(host).provision("vulkan")
        self.assertTrue(host.urls[0].endswith("llama-b6209-bin-ubuntu-vulkan-x64.zip"))

    @unittest.skipIf(os.name == "nt", "POSIX permission bits only")
    def test_extract_restores_permission_bits(self) -> None:
        body = build_archive({"llama-server": b"#!/bin/sh\n"}, modes={"llama-server": 0o755})
        self._provisioner(ReleaseHost(body)).provision()
        mode = (self.install_dir / "llama-server").stat().st_mode
        self.assertTrue(mode & stat.S_IXUSR)

    def test_http_error_carries_response_body(self) -> None:
        host = ReleaseHost(b"Not Found", status_code=404)
        with self.assertRaises(FetchFailed) as ctx:
            self._provisioner(host).provision()
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.detail, "Not Found")
        self.assertIn("Not Found", str(ctx.exception))

    def test_redirects_are_followed(self) -> None:
        body = build_archive({"llama-server": b"bin"})
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            if request.url.host == "github.com":
                return httpx.Response(302, headers={"Location": "https://objects.example/asset.zip"})
            return httpx.Response(200, content=body)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provisioner = ArtifactProvisioner(self.settings, http_client=client, system="Linux", machine="x86_64")
        provisioner.provision()
        self.assertEqual(seen, [RELEASE_URL, "https://objects.example/asset.zip"])
        self.assertEqual((self.install_dir / "llama-server").read_bytes(), b"bin")

    def test_transport_error_becomes_fetch_failed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provisioner = ArtifactProvisioner(self.settings, http_client=client, system="Linux", machine="x86_64")
        with self.assertRaises(FetchFailed):
            provisioner.provision()

    def test_corrupt_archive(self) -> None:
        with self.assertRaises(ExtractionFailed):
            self._provisioner(ReleaseHost(b"this is not a zip file")).provision()

    def test_entries_cannot_escape_install_dir(self) -> None:
        body = build_archive({"../escape.txt": b"nope"})
        with self.assertRaises(ExtractionFailed):
            self._provisioner(ReleaseHost(body)).provision()
        self.assertFalse((self.root / "escape.txt").exists())


class PrefetchModelTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.install_dir = Path(self._tmp.name)
        self.settings = WorkerSettings(install_dir=self.install_dir, executable_suffix="", bin_subdir="")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write_cli(self, body: str) -> None:
        cli = self.install_dir / "llama-cli"
        cli.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        cli.chmod(0o755)

    def test_missing_cli(self) -> None:
        with self.assertRaises(BinaryMissing):
            ArtifactProvisioner(self.settings).prefetch_model("org/model:Q4")

    @unittest.skipIf(os.name == "nt", "requires a POSIX shell")
    def test_prefetch_passes_model_arguments(self) -> None:
        self._write_cli('echo "$@"')
        output = ArtifactProvisioner(self.settings).prefetch_model("org/model:Q4")
        self.assertEqual(output.strip(), "-hf org/model:Q4 -n 1 -no-cnv")

    @unittest.skipIf(os.name == "nt", "requires a POSIX shell")
    def test_prefetch_failure_keeps_output(self) -> None:
        self._write_cli('echo "no such model" >&2\nexit 3')
        with self.assertRaises(PrefetchFailed) as ctx:
            ArtifactProvisioner(self.settings).prefetch_model()
        self.assertEqual(ctx.exception.returncode, 3)
        self.assertIn("no such model", ctx.exception.output)


if __name__ == "__main__":
    unittest.main()
