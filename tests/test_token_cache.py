import threading
import time
from urllib.parse import parse_qs

import pytest

from content_client import ContentClient
from errors import ContentServiceError, CredentialError
from token_cache import TokenAuth, TokenCache, fetch_access_token

AUTH_URL = "https://oauth2.example.test"
API_URL = "https://apis.example.test"


def test_concurrent_callers_share_one_fetch():
    calls = []
    release = threading.Event()

    def fetch():
        calls.append(1)
        release.wait(5)
        return "token-1"

    cache = TokenCache(fetch)
    results = []
    threads = [threading.Thread(target=lambda: results.append(cache.get_token())) for _ in range(8)]
    for thread in threads:
        thread.start()
    time.sleep(0.1)
    release.set()
    for thread in threads:
        thread.join(5)

    assert len(calls) == 1
    assert results == ["token-1"] * 8


def test_token_is_reused_until_invalidated():
    tokens = iter(["a", "b"])
    cache = TokenCache(lambda: next(tokens))
    assert cache.get_token() == "a"
    assert cache.get_token() == "a"
    cache.invalidate()
    assert cache.get_token() == "b"


def test_invalidate_ignores_a_token_that_was_already_replaced():
    tokens = iter(["a", "b", "c"])
    cache = TokenCache(lambda: next(tokens))
    cache.get_token()
    assert cache.refresh("a") == "b"
    # late rejection of the old token keeps the fresh one
    cache.invalidate("a")
    assert cache.get_token() == "b"


def test_fetch_failure_reaches_the_caller_and_is_retried_next_time():
    attempts = []

    def fetch():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("network down")
        return "token"

    cache = TokenCache(fetch)
    with pytest.raises(CredentialError):
        cache.get_token()
    assert not cache.has_token
    assert cache.get_token() == "token"


def test_empty_token_is_a_credential_error():
    with pytest.raises(CredentialError):
        TokenCache(lambda: "").get_token()


def test_fetch_access_token_posts_client_credentials(fake_http):
    def handler(request):
        return 200, {"access_token": "abc", "token_type": "bearer", "expires_in": 3600}

    session, adapter = fake_http(handler)
    assert fetch_access_token(AUTH_URL, "client", "secret", session=session) == "abc"

    request = adapter.sent[0]
    assert request.url == f"{AUTH_URL}/oauth2/token"
    assert request.headers["Authorization"].startswith("Basic ")
    form = parse_qs(request.body)
    assert form["grant_type"] == ["client_credentials"]
    assert form["scope"] == ["content"]


@pytest.mark.parametrize("status, body", [
    (401, {"error": "invalid_client"}),
    (200, {"token_type": "bearer"}),
    (200, "not json"),
])
def test_fetch_access_token_failures(fake_http, status, body):
    session, _ = fake_http(lambda request: (status, body))
    with pytest.raises(CredentialError):
        fetch_access_token(AUTH_URL, "client", "secret", session=session)


def make_client(fake_http, api_status):
    """ContentClient whose chapter listing answers ``api_status(token)``"""
    issued = []

    def handler(request):
        if request.url.endswith("/oauth2/token"):
            issued.append(f"token-{len(issued) + 1}")
            return 200, {"access_token": issued[-1]}
        token = request.headers.get("x-auth-token")
        status = api_status(token)
        return status, {"chapters": [{"id": 1, "verses_count": 7}]} if status == 200 else {"message": "denied"}

    session, adapter = fake_http(handler)
    cache = TokenCache.from_config(FakeConfig(), session=session)
    client = ContentClient(cache, API_URL, "client", session=session)
    return client, adapter, issued


class FakeConfig:
    values = {
        ("api", "AUTH_URL"): AUTH_URL,
        ("api", "CLIENT_ID"): "client",
        ("api", "CLIENT_SECRET"): "secret",
    }

    def get(self, section, key, default=None):
        return self.values.get((section, key), default)

    def getfloat(self, section, key, default=0.0):
        return default


def test_single_rejection_refreshes_and_retries(fake_http):
    client, adapter, issued = make_client(fake_http, lambda token: 401 if token == "token-1" else 200)

    assert client.get_chapters() == [{"id": 1, "verses_count": 7}]
    assert issued == ["token-1", "token-2"]
    api_requests = [r for r in adapter.sent if "/content/api/v4/" in r.url]
    assert [r.headers["x-auth-token"] for r in api_requests] == ["token-1", "token-2"]


def test_forbidden_is_treated_like_unauthorized(fake_http):
    client, _, issued = make_client(fake_http, lambda token: 403 if token == "token-1" else 200)
    assert client.get_chapters()
    assert len(issued) == 2


def test_second_rejection_is_not_retried_again(fake_http):
    client, adapter, issued = make_client(fake_http, lambda token: 401)

    with pytest.raises(ContentServiceError) as excinfo:
        client.get_chapters()
    assert excinfo.value.status == 401
    api_requests = [r for r in adapter.sent if "/content/api/v4/" in r.url]
    assert len(api_requests) == 2
    assert len(issued) == 2


def test_other_failures_are_not_retried(fake_http):
    client, adapter, issued = make_client(fake_http, lambda token: 500)

    with pytest.raises(ContentServiceError) as excinfo:
        client.get_chapters()
    assert excinfo.value.status == 500
    assert len(issued) == 1
    assert len([r for r in adapter.sent if "/content/api/v4/" in r.url]) == 1


def test_token_is_reused_across_requests(fake_http):
    client, _, issued = make_client(fake_http, lambda token: 200)
    client.get_chapters()
    client.get_chapters()
    assert issued == ["token-1"]


def test_token_request_is_left_alone():
    cache = TokenCache(lambda: pytest.fail("token endpoint must not need a token"))

    class Request:
        url = f"{AUTH_URL}/oauth2/token"
        headers = {}

    request = Request()
    assert TokenAuth(cache)(request) is request
    assert "Authorization" not in request.headers
