# playback_controller.py
"""
Continuous verse-by-verse playback over a listening range.

The controller owns the playback state and reacts to two inputs only: user
intents (play, pause, next, seek...) and events emitted by a media transport.
Every load is tagged with an increasing sequence number; transport events
carry the tag of the load they belong to and anything that does not match the
current tag is discarded, so a superseded load can never move the state.

Transport contract (see audio_player.AudioPlayer):
    set_source(url, tag)  start buffering, later emit events tagged ``tag``
    play()                start/resume, raise PlaybackError when refused
    pause(), stop(), seek(seconds), set_volume(volume)
"""
from collections import namedtuple

from errors import PlaybackError, ResolutionError
from position_resolver import resolve
from resource_locator import locate

# Playback states
IDLE = "idle"
LOADING = "loading"
PLAYING = "playing"
PAUSED = "paused"
ENDED = "ended"

# Transport event kinds
EVENT_LOAD_START = "loadstart"
EVENT_CAN_PLAY = "canplay"
EVENT_TIME_UPDATE = "timeupdate"
EVENT_DURATION_CHANGE = "durationchange"
EVENT_ENDED = "ended"
EVENT_ERROR = "error"

TransportEvent = namedtuple("TransportEvent", ["kind", "tag", "value"], defaults=(None,))


def _silent(flag, msg):
    pass


class PlaybackController:

    def __init__(self, transport, lengths, log_callback=None, on_change=None,
                 auto_replay=False, volume=1.0):
        self.transport = transport
        self.lengths = lengths
        self.log_callback = log_callback or _silent
        self.on_change = on_change
        self.auto_replay = auto_replay
        self.volume = min(max(float(volume), 0.0), 1.0)
        self.muted = False
        self._seq = 0
        self._handlers = {
            EVENT_LOAD_START: self._on_load_start,
            EVENT_CAN_PLAY: self._on_can_play,
            EVENT_TIME_UPDATE: self._on_time_update,
            EVENT_DURATION_CHANGE: self._on_duration_change,
            EVENT_ENDED: self._on_ended,
            EVENT_ERROR: self._on_error,
        }
        self._reset()

    def _reset(self):
        self.listening_range = None
        self.template = None
        self.state = IDLE
        self.step_index = 0
        self.position = None
        self.url = None
        self.current_time = 0.0
        self.duration = 0.0
        self.last_error = None
        self._play_intent = False
        self._needs_reload = False

    @property
    def total_steps(self):
        return self.listening_range.total_steps if self.listening_range else 0

    @property
    def current_tag(self):
        """Sequence number of the authoritative load"""
        return self._seq

    # Range lifecycle

    def load_range(self, listening_range, template, autoplay=False):
        """Replace the listening range and reciter template, starting over at step 0"""
        self.unload()
        self.listening_range = listening_range
        self.template = template
        self.transport.set_volume(self._effective_volume())
        self.log_callback("INFO", f"Range loaded: {listening_range.start.verse_key} "
                                  f"+{listening_range.total_steps} verses")
        return self._load(0, autoplay)

    def unload(self):
        """Discard the current range and every pending load"""
        self._seq += 1
        if self.listening_range is not None:
            self.transport.stop()
        self._reset()

    def _load(self, step, autoplay):
        try:
            position = resolve(self.listening_range.start, step, self.lengths)
        except ResolutionError as e:
            self.log_callback("ERROR", f"Cannot resolve step {step}: {e}")
            self.last_error = e
            self._play_intent = False
            if self.state == PLAYING:
                self.transport.pause()
            if self.state != IDLE:
                self.state = PAUSED
            self._notify()
            return False

        self._seq += 1
        self.step_index = step
        self.position = position
        self.url = locate(self.template, position)
        self.current_time = 0.0
        self.duration = 0.0
        self.last_error = None
        self._needs_reload = False
        self._play_intent = autoplay
        self.state = LOADING
        self.log_callback("INFO", f"Loading {position.verse_key} "
                                  f"({step + 1}/{self.total_steps}): {self.url}")
        try:
            self.transport.set_source(self.url, self._seq)
        except PlaybackError as e:
            self._fail(e, reload=True)
            return False
        self._notify()
        return True

    # Transport events

    def dispatch(self, event):
        """Apply one transport event. Returns False when it was stale or unknown"""
        if self.listening_range is None or event.tag != self._seq:
            self.log_callback("DEBUG", f"Discarding stale {event.kind} event (load {event.tag})")
            return False
        handler = self._handlers.get(event.kind)
        if handler is None:
            self.log_callback("WARNING", f"Unknown transport event: {event.kind}")
            return False
        handler(event)
        return True

    def _on_load_start(self, event):
        # Rebuffering after a seek keeps the step
        if self.state in (PLAYING, PAUSED):
            self.state = LOADING

    def _on_can_play(self, event):
        if self.state != LOADING:
            return
        if self._play_intent:
            self._start()
        else:
            self.state = PAUSED
        self._notify()

    def _on_time_update(self, event):
        self.current_time = float(event.value or 0.0)

    def _on_duration_change(self, event):
        self.duration = float(event.value or 0.0)

    def _on_ended(self, event):
        if self.step_index < self.total_steps - 1:
            self._load(self.step_index + 1, True)
        elif self.auto_replay:
            self.log_callback("INFO", "End of range reached, replaying from the start")
            self._load(0, True)
        else:
            self.log_callback("INFO", "End of range reached")
            self._play_intent = False
            self.state = ENDED
            self._notify()

    def _on_error(self, event):
        reason = str(event.value) if event.value else "Media transport error"
        self._fail(PlaybackError(reason), reload=True)

    def _start(self):
        try:
            self.transport.play()
        except PlaybackError as e:
            self._fail(e, reload=False)
            return False
        self.state = PLAYING
        return True

    def _fail(self, error, reload):
        """Leave the current step paused, waiting for the user"""
        if error.step is None:
            error.step = self.step_index
        if error.url is None:
            error.url = self.url
        self.last_error = error
        self._play_intent = False
        self._needs_reload = reload
        self.state = PAUSED
        self.log_callback("ERROR", f"Playback failed at step {self.step_index}: {error}")
        self._notify()

    # User intents

    def play(self):
        """Start or resume the current step"""
        if self.listening_range is None:
            return False
        if self.state in (IDLE, ENDED) or self._needs_reload:
            return self._load(self.step_index, True)
        if self.state == LOADING:
            self._play_intent = True
            return True
        if self.state == PLAYING:
            return True
        self._play_intent = True
        started = self._start()
        self._notify()
        return started

    def pause(self):
        if self.state == PLAYING:
            self.transport.pause()
            self.state = PAUSED
            self._play_intent = False
            self._notify()
            return True
        if self.state == LOADING:
            self._play_intent = False
            return True
        return False

    def toggle(self):
        if self.state == PLAYING or (self.state == LOADING and self._play_intent):
            return self.pause()
        return self.play()

    def retry(self):
        """Reload the current step after a failure"""
        if self.listening_range is None:
            return False
        return self._load(self.step_index, True)

    def next(self):
        if self.listening_range is None or self.step_index >= self.total_steps - 1:
            return False
        return self._load(self.step_index + 1, True)

    def previous(self):
        if self.listening_range is None or self.step_index <= 0:
            return False
        return self._load(self.step_index - 1, True)

    def seek(self, seconds):
        """Move within the current step"""
        if self.listening_range is None or self.state in (IDLE, LOADING):
            return False
        seconds = max(float(seconds), 0.0)
        if self.duration > 0:
            seconds = min(seconds, self.duration)
        self.transport.seek(seconds)
        self.current_time = seconds
        return True

    def set_volume(self, volume):
        self.volume = min(max(float(volume), 0.0), 1.0)
        if self.volume > 0:
            self.muted = False
        self.transport.set_volume(self._effective_volume())
        return True

    def toggle_mute(self):
        self.muted = not self.muted
        self.transport.set_volume(self._effective_volume())
        return self.muted

    def toggle_auto_replay(self):
        self.auto_replay = not self.auto_replay
        self.log_callback("INFO", f"Auto replay {'enabled' if self.auto_replay else 'disabled'}")
        return self.auto_replay

    def _effective_volume(self):
        return 0.0 if self.muted else self.volume

    def _notify(self):
        if self.on_change:
            self.on_change(self)

    def status(self):
        """Snapshot of the playback state"""
        position = self.position
        return {
            "state": self.state,
            "step": self.step_index,
            "total_steps": self.total_steps,
            "verse_key": position.verse_key if position else None,
            "surah": position.chapter if position else None,
            "ayah": position.verse if position else None,
            "url": self.url,
            "current_time": round(self.current_time, 2),
            "duration": round(self.duration, 2),
            "volume": self.volume,
            "muted": self.muted,
            "auto_replay": self.auto_replay,
            "error": str(self.last_error) if self.last_error else None,
        }
