import json

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from errors import ContentServiceError
from playback_controller import TransportEvent
from quran_data import SURAH_AYAT


class FakeAdapter(BaseAdapter):
    """requests transport that answers from a handler instead of the network.

    ``handler(request)`` returns ``(status, body)``; dict and list bodies are
    sent as JSON. Every prepared request is recorded in ``sent``.
    """

    def __init__(self, handler):
        super().__init__()
        self.handler = handler
        self.sent = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.sent.append(request)
        status, body = self.handler(request)
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode()
        elif isinstance(body, str):
            body = body.encode()

        response = requests.Response()
        response.status_code = status
        response._content = body or b""
        response._content_consumed = True
        response.headers = CaseInsensitiveDict({"Content-Type": "application/json"})
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        response.connection = self
        return response

    def close(self):
        pass


class FakeTransport:
    """In-memory media transport recording every call"""

    def __init__(self):
        self.sources = []
        self.calls = []
        self.seeks = []
        self.volume = None
        self.play_error = None
        self.events = []

    def set_source(self, url, tag):
        self.calls.append("set_source")
        self.sources.append((url, tag))

    def play(self):
        self.calls.append("play")
        if self.play_error:
            raise self.play_error

    def pause(self):
        self.calls.append("pause")

    def stop(self):
        self.calls.append("stop")

    def seek(self, seconds):
        self.seeks.append(seconds)

    def set_volume(self, volume):
        self.volume = volume

    def poll(self):
        pass

    def emit(self, kind, value=None, tag=None):
        if tag is None:
            tag = self.sources[-1][1]
        self.events.append(TransportEvent(kind, tag, value))

    def drain_events(self):
        drained, self.events = self.events, []
        return drained

    def cleanup(self):
        self.calls.append("cleanup")

    @property
    def urls(self):
        return [url for url, _ in self.sources]


class FakeContent:
    """Content listings served from memory"""

    def __init__(self, chapters=None, chapters_error=None):
        if chapters is None:
            chapters = [{"id": n, "verses_count": SURAH_AYAT[n]} for n in range(1, 115)]
        self.chapters = chapters
        self.chapters_error = chapters_error
        self.audio_calls = []
        self.chapter_calls = 0

    def get_chapters(self, language=None):
        self.chapter_calls += 1
        if self.chapters_error:
            raise ContentServiceError(self.chapters_error, 503)
        return self.chapters

    def get_reciters(self, language="en"):
        return [
            {"id": 7, "reciter_name": "Mishari Rashid al-`Afasy", "style": None},
            {"id": 2, "reciter_name": "AbdulBaset AbdulSamad", "style": "Murattal"},
        ]

    def get_audio_files(self, recitation_id, mode, number, page=None, per_page=None):
        self.audio_calls.append((recitation_id, mode, number))
        if mode == "rub" and number == 1:
            return {
                "audio_files": [{"verse_key": "1:1", "url": f"Alafasy/mp3/{recitation_id}/001001.mp3"}],
                "pagination": {"total_records": 24},
            }
        if mode == "juz" and number == 30:
            return {
                "audio_files": [
                    {"verse_key": "78:1", "url": "//mirrors.quranicaudio.com/Alafasy/mp3/078001.mp3"},
                    {"verse_key": "78:2", "url": "//mirrors.quranicaudio.com/Alafasy/mp3/078002.mp3"},
                ],
                "pagination": {"total_records": 564},
            }
        return {"audio_files": [], "pagination": {}}

    def get_verses(self, mode, number):
        if mode == "juz" and number == 30:
            return [
                {"verse_key": "78:1", "text_uthmani": "عَمَّ يَتَسَآءَلُونَ"},
                {"verse_key": "78:2", "text_uthmani": "عَنِ ٱلنَّبَإِ ٱلْعَظِيمِ"},
            ]
        return []


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def content():
    return FakeContent()


@pytest.fixture
def content_factory():
    return FakeContent


@pytest.fixture
def fake_http():
    """Factory: ``session, adapter = fake_http(handler)``"""

    def make(handler):
        adapter = FakeAdapter(handler)
        session = requests.Session()
        session.trust_env = False
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session, adapter

    return make
