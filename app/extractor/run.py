"""CLI entry point: open the browser, sign in, and run the extraction loop."""

from __future__ import annotations

import argparse
import os
import threading
from typing import Sequence

from . import config
from .browser import PlaywrightSurface
from .config_validation import validate_runtime_config
from .runtime import EngineHost
from .utils import log_line, setup_run_logger


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the paced profile/company extraction loop for one account.",
    )
    parser.add_argument("--tab-id", default="tab-1", help="Identifier of the controlled browser tab.")
    parser.add_argument(
        "--email",
        default=os.environ.get("EXTRACTOR_USER_EMAIL", ""),
        help="E-mail of the signed-in user, used for remote log lines.",
    )
    headless = parser.add_mutually_exclusive_group()
    headless.add_argument("--headless", dest="headless", action="store_true", default=None)
    headless.add_argument("--headed", dest="headless", action="store_false")
    parser.add_argument(
        "--no-autostart",
        action="store_true",
        help="Only open the browser; wait for /api/start to begin extracting.",
    )
    parser.add_argument("--serve", action="store_true", help="Expose the HTTP control API as well.")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", 8080)))
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        validate_runtime_config("cli")
    except ValueError as exc:
        parser.error(str(exc))

    setup_run_logger()
    surface = PlaywrightSurface(headless=args.headless if args.headless is not None else config.HEADLESS)
    host = EngineHost(args.tab_id, args.email, surface=surface)
    host.start()
    if not args.no_autostart:
        host.start_extraction().result()

    try:
        if args.serve:
            from app.main import app, attach_host

            attach_host(host)
            app.run(host="0.0.0.0", port=args.port)
        else:
            threading.Event().wait()
    except KeyboardInterrupt:
        log_line("[EXTRACTOR] Interrupted; shutting down")
    finally:
        host.shutdown()
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
