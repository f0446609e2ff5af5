from __future__ import annotations

import argparse
import logging
import threading
import time
import webbrowser

import uvicorn

logger = logging.getLogger(__name__)


def _open_browser_delayed(url: str, delay_s: float = 1.0) -> None:
    time.sleep(max(0.0, delay_s))
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.warning("Could not open browser for %s: %s", url, exc)
        return
    if not opened:
        logger.info("No browser available; API docs are at %s", url)


def serve(host: str = "127.0.0.1", port: int = 8000, open_browser: bool = False, log_level: str = "info") -> None:
    from feralsim.api import app as api_app

    url = f"http://{host}:{port}/docs"
    print(f"feralsim API listening on http://{host}:{port}")
    if open_browser:
        threading.Thread(target=_open_browser_delayed, args=(url, 1.0), daemon=True).start()
    uvicorn.run(api_app, host=host, port=port, log_level=log_level)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="feralsim-server",
        description="Run the feralsim HTTP API.",
    )
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--open-browser", action="store_true")
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args(argv)

    serve(host=args.host, port=args.port, open_browser=args.open_browser, log_level=args.log_level)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
