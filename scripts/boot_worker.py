"""Start the local llama.cpp worker, wait for it to load, ask one question, shut it down."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from worker.errors import WorkerError  # noqa: E402
from worker.settings import WorkerSettings  # noqa: E402
from worker.supervisor import WorkerSupervisor  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Boot llama-server and send a single request.")
    parser.add_argument("--model", default=None, help="Hugging Face model reference passed to llama-server.")
    parser.add_argument("--port", type=int, default=None, help="Port for llama-server (defaults to 8080).")
    parser.add_argument("--install-dir", type=Path, default=None, help="Directory holding the llama.cpp release.")
    parser.add_argument(
        "--ready-timeout",
        type=float,
        default=0.0,
        help="Seconds to wait for the model to load (0 waits up to the readiness ceiling).",
    )
    parser.add_argument("--max-tokens", type=int, default=0, help="Token limit for the reply (0 uses the default).")
    parser.add_argument("--system", default=None, help="Optional system message for chat mode.")
    parser.add_argument(
        "--complete",
        action="store_true",
        help="Send the prompt to the raw completion endpoint instead of chat.",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Capture llama-server output into this directory.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("prompt", help="Prompt or user message to send once the worker is ready.")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> WorkerSettings:
    settings = WorkerSettings.load()
    overrides: dict[str, object] = {}
    if args.install_dir is not None:
        overrides["install_dir"] = args.install_dir
    if args.log_dir is not None:
        overrides["log_dir"] = args.log_dir
    return replace(settings, **overrides) if overrides else settings


async def run(args: argparse.Namespace) -> str:
    async with WorkerSupervisor(build_settings(args)) as supervisor:
        await supervisor.start(args.model, args.port)
        print(f"[boot] llama-server starting at {supervisor.base_url} (pid {supervisor.pid})")
        await supervisor.wait_until_loaded(args.ready_timeout)
        print("[boot] llama-server ready")
        client = supervisor.inference_client()
        if args.complete:
            return await client.complete(args.prompt, args.max_tokens)
        messages = []
        if args.system:
            messages.append({"role": "system", "content": args.system})
        messages.append({"role": "user", "content": args.prompt})
        return await client.chat(messages, args.max_tokens)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[boot] %(levelname)s %(name)s: %(message)s",
    )
    try:
        reply = asyncio.run(run(args))
    except WorkerError as exc:
        print(f"[boot] ERROR: {exc}", file=sys.stderr)
        return 1
    print(reply)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
