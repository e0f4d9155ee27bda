import json

import pytest
import requests

from src.forge.client.transport import HttpGenerationTransport, HttpSandboxClient, TransportError
from src.forge.domain.models import Fragment


class FakeResponse:
    def __init__(self, status_code=200, lines=(), body=None, text=""):
        self.status_code = status_code
        self.reason = "Too Many Requests" if status_code == 429 else "OK"
        self._lines = list(lines)
        self._body = body
        self.text = text

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def iter_lines(self):
        for line in self._lines:
            yield line.encode("utf-8")

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.posts = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        if self.exc:
            raise self.exc
        return self.response


def test_reads_snapshots_and_skips_blank_lines():
    lines = [json.dumps({"commentary": "a"}), "", json.dumps({"commentary": "ab"})]
    transport = HttpGenerationTransport("http://gw/chat", session=FakeSession(FakeResponse(lines=lines)))
    assert list(transport.open({"messages": []})) == [{"commentary": "a"}, {"commentary": "ab"}]


def test_http_error_surfaces_body_text():
    body = json.dumps({"error": "rate_limited", "message": "You have reached your request limit."})
    transport = HttpGenerationTransport("http://gw/chat", session=FakeSession(FakeResponse(status_code=429, text=body)))
    with pytest.raises(TransportError) as info:
        list(transport.open({}))
    assert json.loads(str(info.value))["error"] == "rate_limited"


def test_in_band_error_line_raises_after_snapshots():
    err = json.dumps({"error": "provider_overloaded", "message": "busy", "incident_id": "inc_1_abcdefghi"})
    transport = HttpGenerationTransport("http://gw/chat", session=FakeSession(FakeResponse(lines=[json.dumps({"title": "x"}), err])))
    received = []
    with pytest.raises(TransportError) as info:
        for snap in transport.open({}):
            received.append(snap)
    assert received == [{"title": "x"}]
    assert "provider_overloaded" in str(info.value)


def test_connection_failure_is_transport_error():
    transport = HttpGenerationTransport("http://gw/chat", session=FakeSession(exc=requests.ConnectionError("refused")))
    with pytest.raises(TransportError):
        list(transport.open({}))


def test_sandbox_client_posts_fragment_and_ids():
    session = FakeSession(FakeResponse(body={"sbxId": "s1", "url": "https://s1", "template": "nextjs-developer"}))
    client = HttpSandboxClient("http://sbx/api/sandbox", session=session)
    result = client.create(Fragment(template="nextjs-developer", code="x"), user_id="u", access_token="tok")
    assert result.sbx_id == "s1"
    _url, kwargs = session.posts[0]
    assert kwargs["json"]["userID"] == "u"
    assert kwargs["json"]["accessToken"] == "tok"
    assert "teamID" not in kwargs["json"]
    assert kwargs["json"]["fragment"]["template"] == "nextjs-developer"
