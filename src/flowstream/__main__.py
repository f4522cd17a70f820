import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

from flowstream.config import FlowStreamConfig
from flowstream.log_format import configure_logging

ENV_FILE_PATH = Path.home() / ".config" / "flowstream" / "env"
CLIENT_COMMANDS = ("start", "stop", "toggle", "status", "clear", "retry", "refine", "export")


def _load_env_file(path: Path = ENV_FILE_PATH) -> None:
    if not path.exists():
        return
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key not in os.environ:
                os.environ[key] = value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Real-time duplex voice transcription")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("start", help="Start recording")
    subparsers.add_parser("stop", help="Stop recording")
    subparsers.add_parser("toggle", help="Toggle recording on/off")
    subparsers.add_parser("status", help="Query recorder status")
    subparsers.add_parser("retry", help="Acknowledge the last error and unblock the microphone")
    subparsers.add_parser("export", help="Print the transcript")

    clear_parser = subparsers.add_parser("clear", help="Clear the transcript history")
    clear_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    refine_parser = subparsers.add_parser("refine", help="Refine formatting of one transcript item")
    refine_parser.add_argument("id", help="Transcript item id")

    return parser


def main() -> None:
    _load_env_file()
    args = build_parser().parse_args()

    config = FlowStreamConfig()
    configure_logging(verbose=args.verbose, log_file=config.log_file)

    if args.command in CLIENT_COMMANDS:
        asyncio.run(_run_client_command(args, config))
    else:
        asyncio.run(_run_daemon(config))


async def _run_client_command(args: argparse.Namespace, config: FlowStreamConfig) -> None:
    from flowstream.adapters.unix_control import UnixSocketControlClient

    if args.command == "clear" and not args.yes:
        answer = input("Clear all history? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            return

    client = UnixSocketControlClient(socket_path=config.socket_path)
    payload = {"id": args.id} if args.command == "refine" else None

    try:
        result = await client.send_command(args.command, payload)
    except (ConnectionRefusedError, FileNotFoundError):
        print("FlowStream is not running", file=sys.stderr)
        sys.exit(1)

    if args.command == "export" and result.get("status") == "ok":
        print(result.get("transcript", ""))
        return
    print(json.dumps(result, indent=2))
    if result.get("status") == "error":
        sys.exit(1)


async def _run_daemon(config: FlowStreamConfig) -> None:
    from flowstream.factory import create_app, create_control_server
    from flowstream.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logging.error("Critical health check failures, aborting startup")
        sys.exit(1)

    app, controller = create_app(config)
    control = create_control_server(config)

    shutdown_event = asyncio.Event()
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logging.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await control.start()

    background: set[asyncio.Task] = set()

    async def respond(cmd) -> None:
        try:
            cmd.respond(await app.handle(cmd))
        except Exception as exc:
            logging.exception("Command %s failed", cmd.action)
            cmd.respond({"status": "error", "message": str(exc)})

    async def control_loop() -> None:
        async for cmd in control.commands():
            if cmd.action == "refine":
                task = asyncio.create_task(respond(cmd))
                background.add(task)
                task.add_done_callback(background.discard)
            else:
                await respond(cmd)

    control_task = asyncio.create_task(control_loop())
    logging.info("FlowStream ready, waiting for commands on %s", config.socket_path)

    try:
        await shutdown_event.wait()
    finally:
        control_task.cancel()
        try:
            await asyncio.wait_for(control_task, timeout=1.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass
        await controller.shutdown()
        await control.stop()


if __name__ == "__main__":
    main()
