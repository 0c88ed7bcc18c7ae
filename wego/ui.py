"""A small web server for the user interface and its API."""

from __future__ import annotations

import argparse
import functools
import json
import logging
import os
import posixpath
import urllib.parse
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9001
_DEFAULT_ASSETS = os.path.join(os.path.dirname(os.path.abspath(__file__)), "dist")


class AssetRequestHandler(SimpleHTTPRequestHandler):
    """Serves health and API routes, static files, and index.html for page routes."""

    def do_GET(self) -> None:
        self._dispatch(head_only=False)

    def do_HEAD(self) -> None:
        self._dispatch(head_only=True)

    def _dispatch(self, head_only: bool) -> None:
        path = urllib.parse.urlsplit(self.path).path
        if path in ("/health", "/api"):
            self._redirect(path + "/")
        elif path.startswith("/health/"):
            self._respond(HTTPStatus.OK, b"", None, head_only)
        elif path.startswith("/api/"):
            body = json.dumps({"ok": True}, separators=(",", ":")).encode()
            self._respond(HTTPStatus.OK, body, "application/json", head_only)
        elif posixpath.splitext(path)[1] == "":
            # Page routes get index.html; the client-side router takes over.
            self._serve_index(head_only)
        elif head_only:
            super().do_HEAD()
        else:
            super().do_GET()

    def _serve_index(self, head_only: bool) -> None:
        index_path = os.path.join(self.directory, "index.html")
        try:
            with open(index_path, "rb") as index:
                body = index.read()
        except OSError as exc:
            logger.error("could not read index.html: %s", exc)
            self._respond(HTTPStatus.INTERNAL_SERVER_ERROR, b"", None, head_only)
            return
        self._respond(HTTPStatus.OK, body, "text/html; charset=utf-8", head_only)

    def _respond(
        self, status: HTTPStatus, body: bytes, content_type: str | None, head_only: bool
    ) -> None:
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if not head_only:
            self.wfile.write(body)

    def _redirect(self, location: str) -> None:
        self.send_response(HTTPStatus.MOVED_PERMANENTLY)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        logger.info("%s - %s", self.address_string(), format % args)


def make_handler(asset_dir: str | os.PathLike[str]) -> functools.partial:
    """Return a request handler factory serving files from asset_dir."""
    return functools.partial(AssetRequestHandler, directory=os.fspath(asset_dir))


def serve(asset_dir: str | os.PathLike[str], port: int) -> None:
    """Serve the user interface on the given port until interrupted."""
    with ThreadingHTTPServer(("", port), make_handler(asset_dir)) as server:
        logger.info("Serving on port :%d", port)
        server.serve_forever()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="wego-ui", description="Serve the Weave GitOps UI")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    parser.add_argument(
        "--assets-dir", default=_DEFAULT_ASSETS, help="directory holding the built UI"
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    if not os.path.isdir(args.assets_dir):
        logger.error("asset directory %s does not exist", args.assets_dir)
        return 1
    try:
        serve(args.assets_dir, args.port)
    except OSError as exc:
        logger.error("server exited: %s", exc)
        return 1
    except KeyboardInterrupt:
        return 0
    return 0