# token_cache.py
"""
Access token lifecycle for the content API.

One TokenCache is created per process and handed to whatever issues
outbound requests. It keeps the bearer token and the in-flight fetch as
private state: concurrent callers share a single fetch, the token is reused
until a request is rejected, and ``TokenAuth`` plugs the cache into
``requests`` so callers never handle the token themselves.
"""
import threading
from concurrent.futures import Future
from urllib.parse import urlsplit

import requests
from requests.auth import AuthBase, HTTPBasicAuth

from errors import CredentialError

TOKEN_PATH = "/oauth2/token"
AUTH_FAILURE_CODES = (401, 403)


def _silent(flag, msg):
    pass


def fetch_access_token(auth_url, client_id, client_secret, session=None, timeout=10, scope="content"):
    """Exchange client credentials for a bearer token (client-credentials grant)"""
    http = session or requests
    try:
        response = http.post(
            auth_url.rstrip("/") + TOKEN_PATH,
            auth=HTTPBasicAuth(client_id, client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={"grant_type": "client_credentials", "scope": scope},
            timeout=timeout,
        )
        response.raise_for_status()
        token = response.json().get("access_token")
    except requests.RequestException as e:
        raise CredentialError(f"Token request failed: {e}") from e
    except (ValueError, AttributeError) as e:
        raise CredentialError("Token response is not valid JSON") from e

    if not token:
        raise CredentialError("Token response did not contain an access token")
    return token


class TokenCache:

    def __init__(self, fetch, log_callback=None):
        self._fetch = fetch
        self.log_callback = log_callback or _silent
        self._lock = threading.Lock()
        self._token = None
        self._pending = None  # Future shared by everyone waiting on a fetch

    @classmethod
    def from_config(cls, config, session=None, log_callback=None):
        auth_url = config.get("api", "AUTH_URL")
        client_id = config.get("api", "CLIENT_ID", "")
        client_secret = config.get("api", "CLIENT_SECRET", "")
        timeout = config.getfloat("api", "TIMEOUT", 10.0)

        def fetch():
            return fetch_access_token(auth_url, client_id, client_secret, session=session, timeout=timeout)

        return cls(fetch, log_callback)

    @property
    def has_token(self):
        return self._token is not None

    def get_token(self):
        """Return the cached token, fetching it once for all concurrent callers"""
        with self._lock:
            if self._token:
                return self._token
            pending = self._pending
            owner = pending is None
            if owner:
                pending = self._pending = Future()

        if owner:
            self._run_fetch(pending)
        return pending.result()

    def _run_fetch(self, pending):
        self.log_callback("INFO", "Fetching access token")
        try:
            token = self._fetch()
            if not token:
                raise CredentialError("Empty access token")
        except CredentialError as e:
            error = e
        except Exception as e:
            error = CredentialError(f"Token fetch failed: {e}")
        else:
            with self._lock:
                self._token = token
                self._pending = None
            self.log_callback("INFO", "Access token received")
            pending.set_result(token)
            return

        with self._lock:
            self._pending = None
        self.log_callback("ERROR", f"Failed to fetch access token: {error}")
        pending.set_exception(error)

    def invalidate(self, stale=None):
        """Drop the cached token.

        With ``stale`` given, only drop it if it is still that token, so a
        late rejection does not throw away a token another caller just fetched.
        """
        with self._lock:
            if stale is None or self._token == stale:
                self._token = None

    def refresh(self, stale=None):
        self.invalidate(stale)
        return self.get_token()


def _is_token_request(request):
    return urlsplit(request.url or "").path.endswith(TOKEN_PATH)


class TokenAuth(AuthBase):
    """Attach the cached token to requests and retry once after 401/403"""

    def __init__(self, cache, log_callback=None):
        self.cache = cache
        self.log_callback = log_callback or _silent

    def __call__(self, r):
        if _is_token_request(r):
            return r
        self._apply(r, self.cache.get_token())
        r.register_hook("response", self.handle_auth_failure)
        return r

    @staticmethod
    def _apply(r, token):
        r.headers["Authorization"] = f"Bearer {token}"
        r.headers["x-auth-token"] = token

    def handle_auth_failure(self, r, **kwargs):
        """Response hook: refresh the token and resend the request one time"""
        if r.status_code not in AUTH_FAILURE_CODES:
            return r
        if getattr(r.request, "_token_retried", False):
            self.log_callback("WARNING", f"Request still rejected ({r.status_code}) after token refresh")
            return r

        self.log_callback("INFO", f"Received {r.status_code}, refreshing token")
        stale = r.request.headers.get("x-auth-token")

        # Consume content and release the original connection
        r.content
        r.close()

        token = self.cache.refresh(stale)
        prep = r.request.copy()
        prep._token_retried = True
        self._apply(prep, token)

        _r = r.connection.send(prep, **kwargs)
        _r.history.append(r)
        _r.request = prep
        return _r
