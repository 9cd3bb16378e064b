"""CLI entry point: run the API server or chat with a press from the terminal."""
from __future__ import annotations

import argparse
import asyncio
import base64
import logging
import mimetypes
from pathlib import Path
from typing import Optional

import uvicorn

from screentech.agent.errors import ScreenTechError
from screentech.agent.session import SessionManager, build_manager
from screentech.agent.verification import verifiable_ids
from screentech.app.config import get_settings

HELP = """Commands:
  /verify           mark the last assistant reply as the fix
  /image <path>     attach a photo to the next message
  /refresh          reload known fixes into the assistant context
  /clear            clear the service history for this press
  /disconnect       disconnect and quit
  /quit             quit (the press stays connected for next time)"""


def encode_image(path: Path) -> str:
    mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


async def chat_loop(manager: SessionManager, serial: Optional[str]) -> None:
    session = manager.connect(serial) if serial else manager.resume()
    if session is None:
        session = manager.connect(input("Press serial number: "))
    for message in session.transcript:
        print(f"{message.sender.value}> {message.text}\n")
    print(HELP)

    image: Optional[str] = None
    while True:
        line = input("you> ").strip()
        if line in ("/quit", "/exit"):
            return
        if line == "/disconnect":
            manager.disconnect()
            return
        if line == "/clear":
            if input("Clear the service history for this unit? This cannot be undone. [y/N] ").lower() == "y":
                print(manager.clear_history(confirmed=True).transcript[0].text)
            continue
        if line == "/refresh":
            manager.refresh_context()
            print(f"Loaded {len(manager.knowledge())} known fixes.")
            continue
        if line == "/verify":
            candidates = verifiable_ids(manager.session.transcript, manager.context.settings.verify_min_length)
            if not candidates:
                print("Nothing to verify yet.")
                continue
            entry = manager.verify_fix(candidates[-1])
            print("Fix recorded." if entry else "Marked as verified.")
            continue
        if line.startswith("/image "):
            image = encode_image(Path(line[len("/image "):].strip()))
            print("Photo attached.")
            continue

        try:
            stream = manager.send(line, image)
        except ScreenTechError as exc:
            print(exc)
            continue
        image = None
        print("model> ", end="", flush=True)
        async for delta in stream:
            print(delta, end="", flush=True)
        if stream.failed:
            print(stream.message.text, end="")
        print("\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="ScreenTech press diagnostic assistant")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    chat = subparsers.add_parser("chat", help="Chat with a press from the terminal")
    chat.add_argument("--serial", help="Serial number to connect (defaults to the last active press)")
    chat.add_argument("--learning-unit", action="store_true", help="Connect the learning unit")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    if args.command == "serve":
        uvicorn.run("screentech.app.main:app", host=args.host, port=args.port)
        return

    settings = get_settings()
    serial = settings.learning_unit_serial if args.learning_unit else args.serial
    try:
        asyncio.run(chat_loop(build_manager(settings), serial))
    except (KeyboardInterrupt, EOFError):
        print()


if __name__ == "__main__":
    main()
