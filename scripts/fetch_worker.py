"""Download the prebuilt llama.cpp release for this host and optionally prefetch a model."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from worker.errors import WorkerError  # noqa: E402
from worker.host import Accelerator  # noqa: E402
from worker.provisioner import ArtifactProvisioner  # noqa: E402
from worker.settings import WorkerSettings  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch the prebuilt llama.cpp server for this host.")
    parser.add_argument(
        "--accelerator",
        choices=[accelerator.value for accelerator in Accelerator],
        default=Accelerator.NONE.value,
        help="Hardware backend to prefer (honoured where a matching build exists).",
    )
    parser.add_argument("--install-dir", type=Path, default=None, help="Directory to unpack the release into.")
    parser.add_argument("--version", default=None, help="llama.cpp release tag (e.g. b6209).")
    parser.add_argument("--force", action="store_true", help="Re-download even if the server binary exists.")
    parser.add_argument(
        "--prefetch-model",
        nargs="?",
        const="",
        default=None,
        metavar="MODEL",
        help="Also download model weights via llama-cli (defaults to the configured model).",
    )
    parser.add_argument("--print-url", action="store_true", help="Only print the resolved download URL.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> WorkerSettings:
    settings = WorkerSettings.load()
    if args.install_dir is not None:
        settings = replace(settings, install_dir=args.install_dir)
    if args.version:
        settings = replace(settings, release_version=args.version)
    return settings


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[fetch] %(levelname)s %(name)s: %(message)s",
    )
    provisioner = ArtifactProvisioner(build_settings(args))
    try:
        if args.print_url:
            print(provisioner.artifact_url(args.accelerator))
            return 0
        if provisioner.worker_present() and not args.force:
            print(f"[fetch] llama-server already present at {provisioner.settings.server_path}")
        else:
            install_dir = provisioner.provision(args.accelerator)
            print(f"[fetch] llama.cpp unpacked into {install_dir}")
        if args.prefetch_model is not None:
            provisioner.prefetch_model(args.prefetch_model or None)
            print("[fetch] model weights cached")
    except WorkerError as exc:
        print(f"[fetch] ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
