"""Shared fixtures: scripted HTTP session, recorded sleeps and a fake client."""

import io
import json
from http import HTTPStatus
from typing import Any, Dict, List, Optional

import msgpack
import pytest
import requests
from requests.structures import CaseInsensitiveDict

from kibela import FORMAT_JSON, FORMAT_MSGPACK, KibelaClient, KibelaResponse


def make_response(
    body: Any = None,
    status: int = 200,
    content_type: Optional[str] = FORMAT_MSGPACK,
    headers: Optional[Dict[str, str]] = None,
    raw: Optional[bytes] = None
) -> requests.Response:
    """Build a real requests.Response whose body streams from memory."""
    if raw is None:
        if content_type == FORMAT_JSON:
            raw = json.dumps(body).encode('utf-8')
        else:
            raw = msgpack.packb(body, use_bin_type=True)

    response = requests.Response()
    response.status_code = status
    response.reason = HTTPStatus(status).phrase
    response.headers = CaseInsensitiveDict(headers or {})
    if content_type is not None:
        response.headers['content-type'] = content_type
    response.raw = io.BytesIO(raw)
    return response


class ScriptedSession:
    """Stands in for requests.Session; replays responses and exceptions in order."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, **kwargs):
        self.calls.append(dict(kwargs, url=url))
        if not self.script:
            raise AssertionError("Unexpected request: script exhausted")
        outcome = self.script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    """Collects requested sleep durations instead of sleeping."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClient:
    """Records requests by operation name and answers from a table of responses."""

    endpoint = "https://example.kibe.la/api/v1"

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = responses or {}
        self.requests: List[tuple] = []

    def request(self, query, variables=None):
        name = query.name
        self.requests.append((name, variables))
        outcome = self.responses.get(name, {})
        if callable(outcome):
            outcome = outcome(variables)
        if isinstance(outcome, BaseException):
            raise outcome
        return KibelaResponse(data=outcome)

    @property
    def operation_names(self) -> List[str]:
        return [name for name, _ in self.requests]


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_client(sleep):
    """Factory building a KibelaClient wired to a scripted session."""
    def _make(*script, **kwargs):
        session = ScriptedSession(*script)
        options = dict(
            team='example',
            access_token='secret-token',
            user_agent='kibela-content-migrator/test',
            session=session,
            sleep=sleep
        )
        options.update(kwargs)
        return KibelaClient(**options), session
    return _make
