# content_client.py
import requests

from errors import ContentServiceError
from quran_data import validate_selection
from token_cache import TokenAuth, TokenCache

API_PREFIX = "/content/api/v4"

# Path segment of the audio listing for each listening mode
AUDIO_SEGMENTS = {
    "chapter": "by_chapter",
    "juz": "by_juz",
    "hizb": "by_hizb",
    "rub": "by_rub",
}

# Query filter of the verse text listing for each listening mode
VERSE_FILTERS = {
    "chapter": "chapter_number",
    "juz": "juz_number",
    "hizb": "hizb_number",
    "rub": "rub_el_hizb_number",
}


def _silent(flag, msg):
    pass


class ContentClient:
    """Client for the chapter, recitation, audio and verse listings.

    Every request goes through one ``requests.Session`` whose auth is a
    ``TokenAuth`` bound to the shared TokenCache.
    """

    def __init__(self, token_cache, base_url, client_id, session=None, timeout=10, log_callback=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.log_callback = log_callback or _silent
        self.session = session or requests.Session()
        self.session.auth = TokenAuth(token_cache, self.log_callback)
        self.session.headers.update({
            "Accept": "application/json",
            "x-client-id": client_id,
        })

    @classmethod
    def from_config(cls, config, session=None, log_callback=None):
        session = session or requests.Session()
        token_cache = TokenCache.from_config(config, session=session, log_callback=log_callback)
        return cls(
            token_cache,
            config.get("api", "BASE_URL"),
            config.get("api", "CLIENT_ID", ""),
            session=session,
            timeout=config.getfloat("api", "TIMEOUT", 10.0),
            log_callback=log_callback,
        )

    def _get(self, path, params=None):
        url = f"{self.base_url}{API_PREFIX}{path}"
        self.log_callback("DEBUG", f"GET {url} {params or ''}")
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            self.log_callback("ERROR", f"{path} failed with status {status}")
            raise ContentServiceError(f"Request to {path} failed with status {status}", status) from e
        except requests.RequestException as e:
            self.log_callback("ERROR", f"{path} request failed: {e}")
            raise ContentServiceError(f"Request to {path} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ContentServiceError(f"Invalid JSON from {path}", response.status_code) from e

    def get_chapters(self, language=None):
        params = {"language": language} if language else None
        return self._get("/chapters", params).get("chapters", [])

    def get_reciters(self, language="en"):
        return self._get("/resources/recitations", {"language": language}).get("recitations", [])

    def get_audio_files(self, recitation_id, mode, number, page=None, per_page=None):
        """Audio listing of a segment: ``{"audio_files": [...], "pagination": {...}}``"""
        validate_selection(mode, number)
        params = {}
        if page is not None:
            params["page"] = page
        if per_page is not None:
            params["per_page"] = per_page
        path = f"/recitations/{int(recitation_id)}/{AUDIO_SEGMENTS[mode]}/{number}"
        data = self._get(path, params or None)
        data.setdefault("audio_files", [])
        data.setdefault("pagination", {})
        return data

    def get_verses(self, mode, number):
        """Uthmani text of a segment as ``[{"verse_key": ..., "text_uthmani": ...}]``"""
        validate_selection(mode, number)
        return self._get("/quran/verses/uthmani", {VERSE_FILTERS[mode]: number}).get("verses", [])
