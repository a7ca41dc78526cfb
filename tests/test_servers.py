"""Tests for :mod:`act_harness.servers`."""

from __future__ import annotations

import collections.abc as cabc

import httpx
import pytest

from act_harness.servers import GCOM, HTTPSpy, MockResponse, RecordedRequest


@pytest.fixture(name="gcom")
def fixture_gcom() -> cabc.Iterator[GCOM]:
    """GCOM mock bound to the loopback interface."""
    with GCOM(host="127.0.0.1") as gcom:
        yield gcom


@pytest.fixture(name="spy")
def fixture_spy() -> cabc.Iterator[HTTPSpy]:
    """HTTP spy answering with a fixed ``uri`` output."""
    with HTTPSpy({"uri": "https://argo.example.test/wf/1"}, host="127.0.0.1") as spy:
        yield spy


def _client(base_url: str) -> httpx.Client:
    return httpx.Client(base_url=base_url, timeout=httpx.Timeout(5.0))


class TestGCOM:
    """The plugin catalog API mock."""

    def test_canned_response_and_recording(self, gcom: GCOM) -> None:
        """Registered routes answer with JSON and every request is recorded."""
        gcom.on_request(
            "POST /api/plugins",
            MockResponse(status=201, body={"plugin": {"id": "simple-frontend"}}),
        )
        with _client(gcom.url) as client:
            response = client.post(
                "/api/plugins",
                json={"url": "https://example.test/plugin.zip"},
                headers={"Authorization": "Bearer key"},
            )

        assert response.status_code == 201
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {"plugin": {"id": "simple-frontend"}}
        (request,) = gcom.requests()
        assert (request.method, request.path) == ("POST", "/api/plugins")
        assert request.headers["Authorization"] == "Bearer key"
        assert request.json() == {"url": "https://example.test/plugin.zip"}

    def test_path_parameters_and_method(self, gcom: GCOM) -> None:
        """Path parameters reach the handler; other methods fall through."""

        def handler(request: RecordedRequest, params: dict[str, str]) -> MockResponse:
            return MockResponse(body={"id": params["plugin_id"], "method": request.method})

        gcom.handle("GET /api/plugins/{plugin_id}", handler)
        with _client(gcom.url) as client:
            found = client.get("/api/plugins/simple-frontend?version=1")
            wrong_method = client.delete("/api/plugins/simple-frontend")

        assert found.json() == {"id": "simple-frontend", "method": "GET"}
        assert wrong_method.status_code == 404

    def test_unmatched_requests_get_not_found(self, gcom: GCOM) -> None:
        """Requests without a route are recorded and answered with 404."""
        with _client(gcom.url) as client:
            response = client.get("/api/unknown")
        assert response.status_code == 404
        assert response.json()["code"] == "NotFound"
        assert [r.path for r in gcom.requests()] == ["/api/unknown"]
        gcom.clear_requests()
        assert gcom.requests() == []

    def test_later_routes_win(self, gcom: GCOM) -> None:
        """Re-registering a route replaces the earlier response."""
        gcom.on_request("/api/plugins", MockResponse(body="first"))
        gcom.on_request("/api/plugins", MockResponse(body="second"))
        with _client(gcom.url) as client:
            assert client.get("/api/plugins").text == "second"

    def test_container_url(self, gcom: GCOM) -> None:
        """Containers reach the API through the Docker host alias."""
        assert gcom.docker_accessible_url == (
            f"http://host.docker.internal:{gcom.port}/api"
        )

    def test_routes_must_be_paths(self, gcom: GCOM) -> None:
        """Route patterns without a leading slash are rejected."""
        with pytest.raises(ValueError, match="must start with"):
            gcom.on_request("GET plugins", MockResponse())


class TestHTTPSpy:
    """The generic recording server."""

    def test_records_inputs_and_returns_outputs(self, spy: HTTPSpy) -> None:
        """POSTed JSON objects are recorded and the outputs returned."""
        with _client(spy.url) as client:
            response = client.post("/", json={"namespace": "grafana-plugins-cd"})
        assert response.json() == {"uri": "https://argo.example.test/wf/1"}
        assert [call.inputs for call in spy.calls()] == [
            {"namespace": "grafana-plugins-cd"}
        ]
        spy.reset()
        assert spy.calls() == []

    @pytest.mark.parametrize(
        ("method", "content", "status"),
        [("POST", b"{oops", 400), ("POST", b"[1, 2]", 400), ("GET", b"", 405)],
    )
    def test_rejected_requests_are_not_recorded(
        self, spy: HTTPSpy, method: str, content: bytes, status: int
    ) -> None:
        """Bodies that are not JSON objects, and non-POST requests, are refused."""
        with _client(spy.url) as client:
            response = client.request(method, "/", content=content)
        assert response.status_code == status
        assert spy.calls() == []

    def test_empty_body_records_no_inputs(self, spy: HTTPSpy) -> None:
        """A POST without a body counts as a call with no inputs."""
        with _client(spy.url) as client:
            client.post("/")
        assert [call.inputs for call in spy.calls()] == [{}]
