# audio_player.py
import io
import os
import queue
import sys
import threading
import time

os.environ.setdefault('PYGAME_HIDE_SUPPORT_PROMPT', '1')
import pygame
import requests
from mutagen import MutagenError
from mutagen.mp3 import MP3

from errors import PlaybackError
from playback_controller import (
    EVENT_CAN_PLAY,
    EVENT_DURATION_CHANGE,
    EVENT_ENDED,
    EVENT_ERROR,
    EVENT_LOAD_START,
    EVENT_TIME_UPDATE,
    TransportEvent,
)


class AudioPlayer:
    """Media transport that streams per-verse MP3 files through pygame.

    Sources are downloaded on a worker thread and played from memory. All
    feedback is queued as TransportEvent tuples tagged with the load they
    belong to; the owner drains them with ``drain_events`` and must call
    ``poll`` regularly to receive progress and completion events.
    """

    def __init__(self, log_callback, session=None, timeout=30, volume=1.0):
        self.log_callback = log_callback
        self.session = session or requests.Session()
        self.timeout = timeout
        self.volume = volume
        self.lock = threading.Lock()
        self.events = queue.Queue()
        self.state = "stopped"  # stopped, loading, ready, playing, paused
        self.current_tag = None
        self.current_url = None
        self.initialized = False
        self._offset = 0.0  # seconds already played before the last play() call
        self._worker = None

        os.environ.setdefault('SDL_AUDIODRIVER', self.get_audio_driver())

    def get_audio_driver(self):
        """Determine appropriate audio driver for platform"""
        if sys.platform == "darwin":
            return "coreaudio"
        if sys.platform.startswith("linux"):
            return "pulseaudio"
        return "dummy"  # Fallback

    def ensure_initialized(self):
        """Initialize audio only if not already initialized"""
        if self.initialized:
            return True

        if not self.init_audio():
            self.log_callback("CRITICAL", "Audio initialization failed")
            return False

        self.initialized = True
        return True

    def init_audio(self, max_retries=3, retry_delay=1):
        """Initialize audio system with retry logic"""
        for attempt in range(max_retries):
            try:
                # Initialize only the audio mixer
                pygame.mixer.init(
                    frequency=44100,
                    size=-16,
                    channels=2,
                    buffer=1024,
                    allowedchanges=0
                )
                pygame.mixer.music.set_volume(self.volume)
                self.log_callback("INFO", "Audio initialized successfully")
                return True
            except pygame.error as e:
                self.log_callback("ERROR", f"Audio init failed: {str(e)}")
                time.sleep(retry_delay)

        self.log_callback("ERROR", "Failed to initialize audio after retries")
        return False

    def is_initialized(self):
        """Check if audio system is ready"""
        return pygame.mixer.get_init() is not None

    def emit(self, kind, tag, value=None):
        self.events.put(TransportEvent(kind, tag, value))

    def drain_events(self):
        """Return every queued event in arrival order"""
        drained = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained

    def set_source(self, url, tag):
        """Abandon the current source and start buffering ``url``"""
        with self.lock:
            self._stop_mixer()
            self.current_tag = tag
            self.current_url = url
            self._offset = 0.0
            self.state = "loading"
        self.emit(EVENT_LOAD_START, tag)
        self._worker = threading.Thread(target=self._buffer, args=(url, tag), daemon=True)
        self._worker.start()

    def _buffer(self, url, tag):
        """Download one verse and hand it to the mixer unless superseded"""
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.content
        except requests.RequestException as e:
            self.log_callback("ERROR", f"Download failed for {url}: {str(e)}")
            self.emit(EVENT_ERROR, tag, f"Could not fetch {url}")
            return

        duration = self.get_duration(data)
        with self.lock:
            if tag != self.current_tag:
                self.log_callback("DEBUG", f"Dropping superseded audio {url}")
                return
            if not self.ensure_initialized():
                self.emit(EVENT_ERROR, tag, "Audio output unavailable")
                return
            try:
                pygame.mixer.music.load(io.BytesIO(data), "mp3")
            except pygame.error as e:
                self.log_callback("ERROR", f"Cannot decode {url}: {str(e)}")
                self.emit(EVENT_ERROR, tag, f"Cannot decode {url}")
                return
            self.state = "ready"

        if duration:
            self.emit(EVENT_DURATION_CHANGE, tag, duration)
        self.emit(EVENT_CAN_PLAY, tag)

    @staticmethod
    def get_duration(data):
        """Length in seconds of an MP3 payload, None if unknown"""
        try:
            return MP3(io.BytesIO(data)).info.length
        except (MutagenError, ValueError):
            return None

    def play(self):
        """Start or resume playback"""
        with self.lock:
            if self.state == "playing":
                return
            if self.state not in ("ready", "paused"):
                raise PlaybackError("Nothing buffered to play")
            if not self.ensure_initialized():
                raise PlaybackError("Audio output unavailable")
            try:
                if self.state == "paused":
                    pygame.mixer.music.unpause()
                else:
                    pygame.mixer.music.play(start=self._offset)
                self.state = "playing"
            except pygame.error as e:
                self.log_callback("ERROR", f"Playback failed: {str(e)}")
                raise PlaybackError(f"Playback failed: {str(e)}") from e

    def pause(self):
        """Pause current playback"""
        with self.lock:
            if self.state == "playing":
                try:
                    pygame.mixer.music.pause()
                    self.state = "paused"
                    return True
                except pygame.error as e:
                    self.log_callback("ERROR", f"Pause failed: {str(e)}")
            return False

    def seek(self, seconds):
        """Jump to ``seconds`` within the current source"""
        with self.lock:
            if self.state not in ("ready", "playing", "paused"):
                return False
            try:
                if self.state in ("playing", "paused"):
                    pygame.mixer.music.play(start=seconds)
                    if self.state == "paused":
                        pygame.mixer.music.pause()
            except pygame.error as e:
                self.log_callback("ERROR", f"Seek failed: {str(e)}")
                return False
            self._offset = seconds
            tag = self.current_tag
        self.emit(EVENT_TIME_UPDATE, tag, seconds)
        return True

    def set_volume(self, volume):
        self.volume = volume
        if self.initialized:
            try:
                pygame.mixer.music.set_volume(volume)
            except pygame.error as e:
                self.log_callback("ERROR", f"Volume change failed: {str(e)}")

    def poll(self):
        """Emit progress, or completion once the mixer has gone quiet"""
        with self.lock:
            if self.state != "playing":
                return
            try:
                busy = pygame.mixer.music.get_busy()
                position = self._offset + max(pygame.mixer.music.get_pos(), 0) / 1000.0
            except pygame.error as e:
                self.log_callback("WARNING", f"Audio system error: {str(e)}")
                return
            tag = self.current_tag
            if not busy:
                # Finished; a later play() starts the verse over
                self.state = "ready"
                self._offset = 0.0

        if busy:
            self.emit(EVENT_TIME_UPDATE, tag, position)
        else:
            self.emit(EVENT_ENDED, tag)

    def _stop_mixer(self):
        if self.initialized and self.state in ("ready", "playing", "paused"):
            try:
                pygame.mixer.music.stop()
                pygame.mixer.music.unload()
            except pygame.error as e:
                self.log_callback("ERROR", f"Stop failed: {str(e)}")

    def stop(self):
        """Stop playback and forget the current source"""
        with self.lock:
            self._stop_mixer()
            self.state = "stopped"
            self.current_tag = None
            self.current_url = None
            self._offset = 0.0
            return True

    def cleanup(self):
        """Release audio resources"""
        self.stop()
        try:
            if pygame.mixer.get_init():
                pygame.mixer.quit()
        except pygame.error as e:
            self.log_callback("ERROR", f"Cleanup error: {str(e)}")
