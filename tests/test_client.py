import os
import sys

import pytest
import requests

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from client import TrainingsClient


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status_code = status
        self.content = b"" if body is None else b"x"

    def json(self):
        return self.body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class _Recorder(list):
    response = FakeResponse([])


@pytest.fixture
def calls(monkeypatch):
    recorded = _Recorder()

    def fake_get(url, params=None, headers=None, timeout=None):
        recorded.append(("GET", url, params, headers, timeout))
        return recorded.response

    def fake_post(url, json=None, headers=None, timeout=None):
        recorded.append(("POST", url, json, headers, timeout))
        return recorded.response

    monkeypatch.setattr(requests, "get", fake_get)
    monkeypatch.setattr(requests, "post", fake_post)
    return recorded


def test_fetch_plain_list(calls):
    calls.response = FakeResponse([{"version": "1"}])
    client = TrainingsClient("http://server/api/", timeout=3, token="abc")
    assert client.fetch_latest_trainings("0") == [{"version": "1"}]
    method, url, params, headers, timeout = calls[0]
    assert (method, url) == ("GET", "http://server/api/trainings/latest")
    assert params == {"version": "0"}
    assert headers["Authorization"] == "Bearer abc"
    assert timeout == 3


def test_fetch_wrapped_and_single(calls):
    client = TrainingsClient("http://server/api")
    calls.response = FakeResponse({"success": True, "data": [{"version": "2"}]})
    assert client.fetch_latest_trainings() == [{"version": "2"}]
    assert calls[0][2] is None
    assert "Authorization" not in calls[0][3]
    calls.response = FakeResponse({"version": "3", "trainings": {}})
    assert client.fetch_latest_trainings() == [{"version": "3", "trainings": {}}]


def test_fetch_errors(calls):
    client = TrainingsClient("http://server/api")
    calls.response = FakeResponse({"success": False, "error": "maintenance"})
    with pytest.raises(ValueError, match="maintenance"):
        client.fetch_latest_trainings()
    calls.response = FakeResponse([], status=503)
    with pytest.raises(requests.HTTPError):
        client.fetch_latest_trainings()


def test_post_exercise_data(calls):
    client = TrainingsClient("http://server/api")
    calls.response = FakeResponse({"success": True})
    assert client.post_exercise_data({"exerciseName": "Squat"}) == {"success": True}
    method, url, payload, _, _ = calls[0]
    assert (method, url, payload) == (
        "POST",
        "http://server/api/user/exercise-data",
        {"exerciseName": "Squat"},
    )
    calls.response = FakeResponse(None)
    assert client.post_exercise_data({}) == {}
    calls.response = FakeResponse({"success": False})
    with pytest.raises(ValueError):
        client.post_exercise_data({})
