"""CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from typing import List, Optional

from .client import ApiClient
from .config import load_client_settings, load_settings
from .errors import BraindumpError, ValidationError
from .workflow import AudioReference


# Every entry must map to a type the upload broker accepts.
_CONTENT_TYPES = {
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".m4a": "audio/m4a",
    ".mp4": "audio/m4a",
    ".ogg": "audio/ogg",
    ".opus": "audio/ogg",
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    ".mp3": "audio/mpeg",
    ".mpeg": "audio/mpeg",
}


def _guess_content_type(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    if ext not in _CONTENT_TYPES:
        raise ValidationError(
            "Unsupported audio file",
            details=f"{ext or 'no extension'} is not one of {', '.join(sorted(_CONTENT_TYPES))}",
        )
    return _CONTENT_TYPES[ext]


def _run(args: argparse.Namespace, api: ApiClient) -> int:
    from .runner import WorkflowRunner

    with open(args.audio, "rb") as handle:
        data = handle.read()
    audio = AudioReference.from_bytes(data, os.path.basename(args.audio), _guess_content_type(args.audio))
    context = {"name": args.name, "description": args.description, "objective": args.objective}

    state = asyncio.run(WorkflowRunner(api).run(context, audio, save=args.save))
    if not state.transcript_ready:
        print(f"Transcription failed: {state.transcription_error}")
        return 1
    if state.structured is None:
        print(f"Structuring failed: {state.structuring_error}")
        return 1

    output = {"transcription": state.transcription.text, "structuredOutput": state.structured.model_dump()}
    if args.save:
        output["id"] = state.saved_session_id
        if state.save_error:
            output["saveError"] = state.save_error
    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="braindump")
    sub = parser.add_subparsers(dest="command")

    serve_cmd = sub.add_parser("serve", help="Run the HTTP API.")
    serve_cmd.add_argument("--port", type=int, help="Port. Defaults to $PORT or 8080.")

    run_cmd = sub.add_parser("run", help="Transcribe and structure one recording.")
    run_cmd.add_argument("audio", help="Path to an audio file.")
    run_cmd.add_argument("--name", required=True, help="Session name.")
    run_cmd.add_argument("--description", required=True, help="Session description.")
    run_cmd.add_argument("--objective", required=True, help="Session objective.")
    run_cmd.add_argument("--save", action="store_true", help="Save the result to your sessions.")

    sessions_cmd = sub.add_parser("sessions", help="List or delete saved sessions.")
    sessions_sub = sessions_cmd.add_subparsers(dest="action")
    sessions_sub.add_parser("list")
    delete_cmd = sessions_sub.add_parser("delete")
    delete_cmd.add_argument("session_id")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    if args.command == "serve":
        from .main import serve

        settings = load_settings()
        if args.port:
            settings.port = args.port
        serve(settings)
        return 0

    if args.command not in ("run", "sessions"):
        parser.print_help()
        return 1

    api = ApiClient(load_client_settings())
    try:
        if args.command == "run":
            return _run(args, api)
        if args.action == "delete":
            api.delete_session(args.session_id)
            print(f"Deleted {args.session_id}")
            return 0
        for session in api.list_sessions():
            print(f"{session.id}  {session.created_at.isoformat()}  {session.session_context.name}")
        return 0
    except BraindumpError as exc:
        print(f"Error: {exc.message}" + (f" ({exc.details})" if exc.details else ""))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
