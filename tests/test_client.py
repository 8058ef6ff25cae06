import io

import pytest
import requests
from PIL import Image

from match_trial_viewer.client import MatchTrialClient, MatchTrialServiceError
from match_trial_viewer.models import TrialParameters

BASE_URL = "http://render:8080/render-ws/v1"


class StubResponse:
    def __init__(self, status_code=200, payload=None, content=b"", reason="OK", text=""):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.reason = reason
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class StubSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, timeout, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def test_get_trial(trial_json):
    session = StubSession(StubResponse(payload=trial_json))
    client = MatchTrialClient(BASE_URL, "flyTEM", session=session, timeout=5)

    assert client.get_trial("abc") == trial_json
    method, url, timeout, kwargs = session.requests[0]
    assert (method, url, timeout) == ("GET", f"{BASE_URL}/owner/flyTEM/matchTrial/abc", 5)
    assert kwargs["headers"] == {"Cache-Control": "no-cache"}


def test_create_trial_posts_parameters(trial_json):
    parameters = TrialParameters.from_json(trial_json["parameters"])
    session = StubSession(StubResponse(payload={"id": "new-trial"}))
    client = MatchTrialClient(BASE_URL + "/", "flyTEM", session=session)

    assert client.create_trial(parameters) == "new-trial"
    method, url, _, kwargs = session.requests[0]
    assert (method, url) == ("POST", f"{BASE_URL}/owner/flyTEM/matchTrial")
    assert kwargs["json"] == parameters.to_json()
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert kwargs["headers"]["Accept"] == "application/json"


def test_delete_trial():
    session = StubSession(StubResponse())
    client = MatchTrialClient(BASE_URL, "flyTEM", session=session)

    client.delete_trial("abc")

    assert session.requests[0][:2] == ("DELETE", f"{BASE_URL}/owner/flyTEM/matchTrial/abc")


def test_save_matches_puts_to_collection():
    session = StubSession(StubResponse())
    client = MatchTrialClient(BASE_URL, "flyTEM", session=session)
    records = [{"pGroupId": "1.0", "pId": "a.1.0", "qGroupId": "1.0", "qId": "b.1.0", "matches": {}}]

    client.save_matches("other", "test_matches", records)

    method, url, _, kwargs = session.requests[0]
    assert (method, url) == ("PUT", f"{BASE_URL}/owner/other/matchCollection/test_matches/matches")
    assert kwargs["json"] == records


def test_http_error_becomes_service_error():
    session = StubSession(StubResponse(status_code=404, reason="Not Found", text="match trial abc not found"))
    client = MatchTrialClient(BASE_URL, "flyTEM", session=session)

    with pytest.raises(MatchTrialServiceError) as info:
        client.get_trial("abc")

    assert info.value.message == "Not Found: match trial abc not found"


def test_connection_error_becomes_service_error():
    session = StubSession(requests.ConnectionError("connection refused"))
    client = MatchTrialClient(BASE_URL, "flyTEM", session=session)

    with pytest.raises(MatchTrialServiceError) as info:
        client.delete_trial("abc")

    assert info.value.status_text == "error"
    assert "connection refused" in info.value.message


def test_fetch_image_decodes_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (12, 8), (10, 20, 30)).save(buffer, format="JPEG")
    session = StubSession(StubResponse(content=buffer.getvalue()))
    client = MatchTrialClient(BASE_URL, "flyTEM", session=session)

    image = client.fetch_image("http://render/tile/a.1.0/jpeg-image?scale=0.2")

    assert image.size == (12, 8)
