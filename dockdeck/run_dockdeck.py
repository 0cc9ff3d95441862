from __future__ import annotations

import argparse
import os
import sys
import traceback
from pathlib import Path

import uvicorn


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dockdeck", add_help=True)
    parser.add_argument("--host", default=os.environ.get("DOCKDECK_HOST", "0.0.0.0"))
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("DOCKDECK_PORT", "3000")),
        help="Port to bind (default 3000).",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="SQLite database location; overrides DOCKDECK_DB_PATH.",
    )
    parser.add_argument("--log-level", default=None, help="Python log level name.")
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Simulate container actions and host restarts.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(list(sys.argv[1:] if argv is None else argv))
    if args.port < 0 or args.port > 65535:
        raise ValueError("--port must be in range 0..65535")

    # Environment must be in place before app.core.config is imported.
    if args.db_path is not None:
        os.environ["DOCKDECK_DB_PATH"] = str(args.db_path.resolve())
    if args.log_level:
        os.environ["DOCKDECK_LOG_LEVEL"] = args.log_level
    if args.demo:
        os.environ["DOCKDECK_DEMO_MODE"] = "1"

    backend_root = Path(__file__).resolve().parent
    if str(backend_root) not in sys.path:
        sys.path.insert(0, str(backend_root))

    from app.main import app as fastapi_app

    uvicorn.run(
        fastapi_app,
        host=args.host,
        port=int(args.port),
        log_level=(args.log_level or "info").lower(),
        access_log=False,
    )


if __name__ == "__main__":
    try:
        main()
    except SystemExit:
        raise
    except Exception:
        traceback.print_exc(file=sys.stderr)
        raise SystemExit(1)
