import json
from unittest.mock import MagicMock

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from quickbase import QuickBase

RAY_ID = "7d0a1b2c3d4e5f60-IAD"


def make_response(status=200, body=None, headers=None, url="https://api.quickbase.com/v1/"):
    resp = requests.Response()
    resp.status_code = status
    resp.reason = "OK" if status < 400 else "Error"
    resp.url = url
    resp.encoding = "utf-8"
    resp.headers = CaseInsensitiveDict({
        "date": "Mon, 19 Oct 2026 14:00:00 GMT",
        "qb-api-ray": RAY_ID,
        "x-ratelimit-remaining": "99",
        "x-ratelimit-limit": "100",
        "x-ratelimit-reset": "1000",
        **(headers or {}),
    })
    resp._content = json.dumps(body).encode("utf-8") if body is not None else b""
    return resp


def expired_ticket_response():
    return make_response(401, {"message": "Unauthorized", "description": "Your ticket has expired."})


@pytest.fixture
def session():
    s = MagicMock(spec=requests.Session)
    s.request.return_value = make_response(200, {})
    return s


@pytest.fixture
def qb(session):
    return QuickBase(realm="demo.quickbase.com", user_token="b7xxxx_user_token", session=session)


def sent(session, index=-1):
    """(method, url, kwargs) of a request the fake session received."""
    call = session.request.call_args_list[index]
    return call.args[0], call.args[1], call.kwargs
