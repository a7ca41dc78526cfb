"""Local HTTP servers that stand in for external services during act runs.

act runs steps in containers, so the servers listen on every interface and
hand out ``host.docker.internal`` URLs. On Linux the runner maps that host
name to the gateway with ``--add-host``.

>>> with HTTPSpy({"uri": "https://example.test/run"}, host="127.0.0.1") as spy:
...     spy.docker_accessible_url.startswith("http://host.docker.internal:")
True
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import http.server
import json
import logging
import re
import socketserver
import threading
import typing as typ

if typ.TYPE_CHECKING:
    import types

__all__ = [
    "GCOM",
    "GCOM_API_PREFIX",
    "HTTPSpy",
    "MockHTTPServer",
    "MockResponse",
    "RecordedRequest",
    "RequestHandler",
    "SpyCall",
]

logger = logging.getLogger(__name__)

GCOM_API_PREFIX = "/api"
DOCKER_HOST = "host.docker.internal"

_PARAM_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclasses.dataclass(frozen=True, slots=True)
class RecordedRequest:
    """A request received by a mock server."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes = b""

    def json(self) -> typ.Any:  # noqa: ANN401
        """Return the body decoded as JSON."""
        return json.loads(self.body)


@dataclasses.dataclass(frozen=True, slots=True)
class MockResponse:
    """A canned response. Bodies other than ``str`` or ``bytes`` are sent as JSON."""

    status: int = 200
    body: object = None
    headers: cabc.Mapping[str, str] = dataclasses.field(default_factory=dict)

    def encode(self) -> bytes:
        """Return the body as bytes."""
        match self.body:
            case None:
                return b""
            case bytes():
                return self.body
            case str():
                return self.body.encode("utf-8")
            case _:
                return json.dumps(self.body).encode("utf-8")


RequestHandler: typ.TypeAlias = cabc.Callable[[RecordedRequest, dict[str, str]], MockResponse]


@dataclasses.dataclass(frozen=True, slots=True)
class _Route:
    method: str | None
    pattern: re.Pattern[str]
    handler: RequestHandler


def _compile_route(route: str, handler: RequestHandler) -> _Route:
    """Compile ``"[METHOD ]/path/{param}"`` into a route."""
    method, _, path = route.strip().rpartition(" ")
    if not path.startswith("/"):
        msg = f"route path must start with '/': {route!r}"
        raise ValueError(msg)
    regex = "".join(
        f"(?P<{piece}>[^/]+)" if index % 2 else re.escape(piece)
        for index, piece in enumerate(_PARAM_RE.split(path))
    )
    return _Route(method.upper() or None, re.compile(f"{regex}/?"), handler)


class _ThreadedServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    daemon_threads = True
    allow_reuse_address = True


class MockHTTPServer:
    """A threaded HTTP server delegating every request to :meth:`respond`.

    The server starts on construction and binds a free port. Close it, or
    use it as a context manager, to stop it.
    """

    def __init__(self, *, host: str = "0.0.0.0") -> None:  # noqa: S104
        owner = self

        class _Handler(http.server.BaseHTTPRequestHandler):
            def _dispatch(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                request = RecordedRequest(
                    method=self.command,
                    path=self.path.split("?", 1)[0],
                    headers=dict(self.headers.items()),
                    body=self.rfile.read(length) if length else b"",
                )
                response = owner.respond(request)
                body = response.encode()
                self.send_response(response.status)
                for name, value in response.headers.items():
                    self.send_header(name, value)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = _dispatch  # noqa: N815

            def log_message(self, format: str, *args: object) -> None:  # noqa: A002
                logger.debug("%s: " + format, type(owner).__name__, *args)

        self._server = _ThreadedServer((host, 0), _Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.debug("%s listening on port %d", type(self).__name__, self.port)

    def __enter__(self) -> typ.Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: types.TracebackType | None,
    ) -> None:
        self.close()

    @property
    def port(self) -> int:
        """Return the bound port."""
        return self._server.server_address[1]

    @property
    def url(self) -> str:
        """Return the URL reachable from the host, e.g. ``http://127.0.0.1:1234``."""
        return f"http://127.0.0.1:{self.port}"

    @property
    def docker_accessible_url(self) -> str:
        """Return the URL reachable from inside act's containers."""
        return f"http://{DOCKER_HOST}:{self.port}"

    def respond(self, request: RecordedRequest) -> MockResponse:
        """Return the response to ``request``."""
        raise NotImplementedError

    def close(self) -> None:
        """Stop serving and release the port."""
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=2)


class GCOM(MockHTTPServer):
    """Mock of the plugin catalog (GCOM) API.

    Every request is recorded. Requests matching no registered route get a
    JSON 404. Routes take the form ``"POST /api/plugins/{plugin_id}"``; the
    method is optional and path parameters are passed to the handler.

    Examples
    --------
    >>> with GCOM(host="127.0.0.1") as gcom:
    ...     gcom.on_request("GET /api/plugins/{plugin_id}", MockResponse(body={"id": "p"}))
    ...     gcom.docker_accessible_url.endswith("/api")
    True
    """

    def __init__(self, *, host: str = "0.0.0.0") -> None:  # noqa: S104
        self._lock = threading.Lock()
        self._requests: list[RecordedRequest] = []
        self._routes: list[_Route] = []
        super().__init__(host=host)

    @property
    def docker_accessible_url(self) -> str:
        """Return the container-reachable URL, including the ``/api`` prefix."""
        return f"http://{DOCKER_HOST}:{self.port}{GCOM_API_PREFIX}"

    def handle(self, route: str, handler: RequestHandler) -> None:
        """Register ``handler`` for ``route``; later registrations win."""
        compiled = _compile_route(route, handler)
        with self._lock:
            self._routes.insert(0, compiled)

    def on_request(self, route: str, response: MockResponse) -> None:
        """Answer ``route`` with the fixed ``response``."""
        self.handle(route, lambda _request, _params: response)

    def requests(self) -> list[RecordedRequest]:
        """Return a copy of the requests received so far."""
        with self._lock:
            return list(self._requests)

    def clear_requests(self) -> None:
        """Forget the recorded requests."""
        with self._lock:
            self._requests.clear()

    def respond(self, request: RecordedRequest) -> MockResponse:
        """Record ``request`` and dispatch it to the first matching route."""
        with self._lock:
            self._requests.append(request)
            routes = list(self._routes)
        for route in routes:
            if route.method is not None and route.method != request.method:
                continue
            match = route.pattern.fullmatch(request.path)
            if match is not None:
                response = route.handler(request, match.groupdict())
                headers = {"Content-Type": "application/json", **response.headers}
                return dataclasses.replace(response, headers=headers)
        logger.debug("GCOM mock has no route for %s %s", request.method, request.path)
        return MockResponse(
            status=404,
            body={
                "code": "NotFound",
                "message": "no mock handler registered for this path",
            },
            headers={"Content-Type": "application/json"},
        )


@dataclasses.dataclass(frozen=True, slots=True)
class SpyCall:
    """The JSON inputs of one call received by an :class:`HTTPSpy`."""

    inputs: dict[str, typ.Any]


class HTTPSpy(MockHTTPServer):
    """Records JSON POST bodies and answers each with fixed ``outputs``.

    A mocked step can ``curl`` its inputs to the spy and read its outputs
    from the JSON reply; the test then asserts on :meth:`calls`.
    """

    def __init__(
        self,
        outputs: cabc.Mapping[str, str] | None = None,
        *,
        host: str = "0.0.0.0",  # noqa: S104
    ) -> None:
        self.outputs = dict(outputs or {})
        self._lock = threading.Lock()
        self._calls: list[SpyCall] = []
        super().__init__(host=host)

    def calls(self) -> list[SpyCall]:
        """Return a copy of the calls received so far."""
        with self._lock:
            return list(self._calls)

    def reset(self) -> None:
        """Forget the recorded calls."""
        with self._lock:
            self._calls.clear()

    def respond(self, request: RecordedRequest) -> MockResponse:
        """Record the JSON body of a POST and reply with :attr:`outputs`."""
        if request.method != "POST":
            return MockResponse(status=405)
        try:
            inputs = request.json() if request.body else {}
        except ValueError:
            logger.warning("HTTP spy received a body that is not JSON")
            return MockResponse(status=400)
        if not isinstance(inputs, dict):
            logger.warning("HTTP spy received JSON that is not an object")
            return MockResponse(status=400)
        with self._lock:
            self._calls.append(SpyCall(inputs=inputs))
        return MockResponse(
            body=self.outputs, headers={"Content-Type": "application/json"}
        )
