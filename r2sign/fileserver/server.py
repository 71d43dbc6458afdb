# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""File server edge for signed file links.

Provides a WSGI application that serves ``/files/<key>?signature=<tag>``
after checking the link tag against the raw object key.  The WSGI layer
has already percent-decoded the request path, so the matched ``key`` is
the raw key the link was signed over.
"""

import json
import logging
import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from werkzeug.wrappers.response import StartResponse

from werkzeug.exceptions import MethodNotAllowed, NotFound
from werkzeug.routing import Map, Rule
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from r2sign.config import (
    DEFAULT_CACHE_MAX_AGE,
    DEFAULT_FILES_HOST,
    DEFAULT_FILES_PORT,
    Config,
)
from r2sign.fileserver.store import (
    BucketObjectStore,
    DirectoryObjectStore,
    ObjectStore,
)
from r2sign.links import SIGNATURE_PARAM, LinkSigner


logger = logging.getLogger(__name__)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
}

_PREFLIGHT_HEADERS = {
    **_CORS_HEADERS,
    "Access-Control-Allow-Headers": "Content-Type",
}


class FileServer:
    """WSGI file server that enforces link signatures.

    Runs in a background thread.  Handlers share only the immutable
    signer and the object store.
    """

    def __init__(
        self,
        signer: LinkSigner,
        store: ObjectStore,
        host: str = DEFAULT_FILES_HOST,
        port: int = DEFAULT_FILES_PORT,
        cache_max_age: int = DEFAULT_CACHE_MAX_AGE,
    ) -> None:
        """Initialize file server.

        Args:
            signer: Link signer holding the shared secret.
            store: Source of object bytes.
            host: Host to bind to.
            port: Port to bind to.
            cache_max_age: ``Cache-Control`` max-age for served files.
        """
        self.signer = signer
        self.store = store
        self.host = host
        self.port = port
        self.cache_max_age = cache_max_age
        self._server: Any = None
        self._thread: threading.Thread | None = None

        self._url_map = Map(
            [
                Rule(
                    "/files/<path:key>",
                    endpoint="file",
                    methods=["GET", "HEAD", "OPTIONS"],
                ),
                Rule("/health", endpoint="health", methods=["GET"]),
            ],
            merge_slashes=False,
        )

        self._endpoint_handlers = {
            "file": self.handle_file,
            "health": self.handle_health,
        }

    @classmethod
    def from_config(cls, config: Config) -> "FileServer":
        """Build a server from configuration.

        Serves from ``files.root`` when set, otherwise from the bucket.
        """
        store: ObjectStore
        if config.files.root is not None:
            store = DirectoryObjectStore(config.files.root)
        else:
            store = BucketObjectStore(
                config.storage.presigner(), config.storage.bucket
            )
        return cls(
            config.links.signer(),
            store,
            host=config.files.host,
            port=config.files.port,
            cache_max_age=config.files.cache_max_age,
        )

    def start(self) -> None:
        """Start the server in a background thread."""
        self._server = make_server(
            self.host,
            self.port,
            self._wsgi_app,
            threaded=True,
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="FileServer",
        )
        self._thread.start()
        logger.info(
            "File server started at http://%s:%d/", self.host, self.port
        )

    def stop(self) -> None:
        """Stop the server."""
        if self._server:
            self._server.shutdown()
            logger.info("File server stopped")

    def wait(self) -> None:
        """Block until the server thread exits."""
        if self._thread:
            self._thread.join()

    def _wsgi_app(
        self,
        environ: dict[str, Any],
        start_response: "StartResponse",
    ) -> Iterable[bytes]:
        """WSGI application entry point."""
        request = Request(environ)
        response = self._dispatch(request)
        return response(environ, start_response)

    def _dispatch(self, request: Request) -> Response:
        """Route request to appropriate handler."""
        adapter = self._url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
            handler = self._endpoint_handlers[endpoint]
            return handler(request, **values)
        except NotFound:
            return Response("Not Found", status=404)
        except MethodNotAllowed as e:
            return Response(
                "Method Not Allowed",
                status=405,
                headers={"Allow": ", ".join(e.valid_methods or [])},
            )
        except Exception:
            logger.exception("Error handling request %s", request.path)
            return Response("Internal Server Error", status=500)

    def handle_file(self, request: Request, key: str) -> Response:
        """Serve one object after checking its link signature.

        Args:
            request: Incoming request.
            key: Raw object key (already percent-decoded).

        Returns:
            The object, or 401 (no signature), 403 (bad signature),
            404 (no such object), 304 (ETag match).
        """
        if request.method == "OPTIONS":
            return Response(status=204, headers=_PREFLIGHT_HEADERS)

        signature = request.args.get(SIGNATURE_PARAM)
        if not signature:
            logger.warning("Missing signature for %s", key)
            return Response(
                "Missing signature", status=401, headers=_CORS_HEADERS
            )
        if not self.signer.verify(key, signature):
            logger.warning("Invalid signature for %s", key)
            return Response(
                "Invalid signature", status=403, headers=_CORS_HEADERS
            )

        stored = self.store.get(key)
        if stored is None:
            return Response("File not found", status=404, headers=_CORS_HEADERS)

        headers = {
            **_CORS_HEADERS,
            "Cache-Control": (
                f"public, max-age={self.cache_max_age}, immutable"
            ),
        }
        if stored.etag:
            headers["ETag"] = stored.etag
            if request.headers.get("If-None-Match") == stored.etag:
                return Response(status=304, headers=headers)

        headers["Content-Length"] = str(stored.size)
        return Response(
            stored.body,
            status=200,
            content_type=stored.content_type,
            headers=headers,
        )

    def handle_health(self, request: Request) -> Response:
        """Liveness probe."""
        return Response(
            json.dumps({"status": "ok"}),
            content_type="application/json",
        )
