"""CLI entry point for studyquiz.

Usage:
  python -m studyquiz serve [--port PORT] [--host HOST]
  python -m studyquiz stop
  python -m studyquiz restart [--port PORT]
  python -m studyquiz status
  python -m studyquiz generate FILE [--type T] [--difficulty D] [--level L] [--count N]
  python -m studyquiz stats
"""
from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".server.pid"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    if command == "serve":
        _serve(args[1:])
    elif command == "stop":
        _stop()
    elif command == "restart":
        _restart(args[1:])
    elif command == "status":
        _status()
    elif command == "generate":
        _generate(args[1:])
    elif command == "stats":
        _stats()
    else:
        print(f"Unknown command: {command}")
        print("Commands: serve, stop, restart, status, generate, stats")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _read_pid() -> int | None:
    """Read PID from file, return None if stale or missing."""
    if not PID_FILE.exists():
        return None
    try:
        pid = int(PID_FILE.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        PID_FILE.unlink(missing_ok=True)
        return None


def _stop() -> bool:
    """Stop a running server. Returns True if a server was stopped."""
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
        return False
    try:
        os.kill(pid, signal.SIGTERM)
        print(f"Stopped server (PID {pid}).")
        PID_FILE.unlink(missing_ok=True)
        return True
    except ProcessLookupError:
        print("Server was not running (stale PID file removed).")
        PID_FILE.unlink(missing_ok=True)
        return False


def _status():
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
    else:
        print(f"Server is running (PID {pid}).")


def _restart(args: list[str]):
    import time
    _stop()
    time.sleep(1)
    _serve(args)


def _serve(args: list[str]):
    import uvicorn

    existing = _read_pid()
    if existing is not None:
        print(f"Server already running (PID {existing}). Use 'restart' or 'stop' first.")
        sys.exit(1)

    port = int(_parse_flag(args, "--port", "8000"))
    host = _parse_flag(args, "--host", "127.0.0.1")
    PID_FILE.write_text(str(os.getpid()))

    print(f"Starting StudyQuiz on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    try:
        uvicorn.run(
            "studyquiz.app:app",
            host=host,
            port=port,
            reload=False,
            timeout_graceful_shutdown=5,
        )
    finally:
        PID_FILE.unlink(missing_ok=True)


def _generate(args: list[str]):
    """Generate questions from a text file and print them as JSON."""
    if not args or args[0].startswith("--"):
        print("Usage: generate FILE [--type T] [--difficulty D] [--level L] [--count N]")
        sys.exit(1)

    from studyquiz.config import load_settings, make_llm
    from studyquiz.errors import GenerationError
    from studyquiz.models import ParameterError, validate_parameters
    from studyquiz.question_generator import QuestionGenerator

    source = Path(args[0])
    if not source.exists():
        print(f"File not found: {source}")
        sys.exit(1)

    try:
        params = validate_parameters({
            "questionType": _parse_flag(args, "--type", "multiple-choice"),
            "difficulty": _parse_flag(args, "--difficulty", "medium"),
            "academicLevel": _parse_flag(args, "--level", "high"),
            "questionCount": _parse_flag(args, "--count", "10"),
        })
    except ParameterError as e:
        print(f"Invalid parameters: {e}")
        sys.exit(1)

    try:
        settings = load_settings()
        llm = make_llm(settings)
    except ValueError as e:
        print(e)
        sys.exit(1)

    generator = QuestionGenerator(llm, temperature=settings.temperature, timeout=settings.generation_timeout)
    print(f"Generating {params.question_count} questions using {llm.name()}...", file=sys.stderr)
    try:
        questions = asyncio.run(generator.generate(source.read_text(), params))
    except GenerationError as e:
        print(f"Generation failed: {e}", file=sys.stderr)
        sys.exit(2)

    print(json.dumps([q.to_dict() for q in questions], indent=2, ensure_ascii=False))


def _stats():
    from studyquiz.config import load_settings
    from studyquiz.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)
    stats = db.get_stats()

    print("StudyQuiz Stats")
    print("=" * 40)
    print(f"Users:              {stats['total_users']}")
    print(f"Quizzes:            {stats['total_quizzes']}")
    print(f"Shared quizzes:     {stats['shared_quizzes']}")
    print(f"Questions:          {stats['total_questions']}")
    print(f"Attempts:           {stats['total_attempts']}")
    print(f"Overall accuracy:   {stats['accuracy']}%")
    db.close()


if __name__ == "__main__":
    main()
