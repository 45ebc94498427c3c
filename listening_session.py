# listening_session.py
from errors import ContentServiceError, DataIncompleteError
from position_resolver import ListeningRange, VersePosition
from quran_data import ChapterLengthTable, validate_selection
from resource_locator import derive_template


def _silent(flag, msg):
    pass


class ListeningSession:
    """Turns a reciter and a selection into a listening range.

    Owns the chapter length table and the reciter's path template. The
    template is derived once per reciter and dropped when the reciter changes.
    """

    def __init__(self, content, audio_base_url, log_callback=None, fallback_lengths=None):
        self.content = content
        self.audio_base_url = audio_base_url
        self.log_callback = log_callback or _silent
        self.fallback_lengths = fallback_lengths
        self.reciter_id = None
        self._template = None
        self._lengths = None

    def chapter_table(self):
        """Chapter lengths from the chapter listing, fetched once.

        When the listing is unreachable and ``fallback_lengths`` is set, the
        fallback table is returned for this call and the fetch is retried on
        the next one.
        """
        if self._lengths is None:
            try:
                chapters = self.content.get_chapters()
            except ContentServiceError as e:
                if self.fallback_lengths is None:
                    raise
                self.log_callback("WARNING", f"Chapter listing unavailable ({e}), using bundled verse counts")
                return self.fallback_lengths
            table = ChapterLengthTable.from_chapters(chapters)
            if not table.is_complete():
                self.log_callback("WARNING", f"Chapter listing has only {len(table)} of 114 chapters")
            self._lengths = table
        return self._lengths

    def select_reciter(self, reciter_id):
        reciter_id = int(reciter_id)
        if reciter_id != self.reciter_id:
            self._template = None
            self.log_callback("INFO", f"Reciter changed to {reciter_id}")
        self.reciter_id = reciter_id

    def reciter_template(self):
        """Path template of the current reciter, discovered from the first rub listing"""
        if self._template is None:
            files = self.content.get_audio_files(self.reciter_id, "rub", 1)["audio_files"]
            if not files:
                raise ContentServiceError(f"No audio files published for reciter {self.reciter_id}")
            self._template = self._derive(files[0]["url"])
        return self._template

    def _derive(self, url):
        result = derive_template(url, self.audio_base_url)
        if not result.parsed:
            self.log_callback("WARNING", f"Could not parse audio URL {url}, using {self.audio_base_url}")
        return result.template

    def build_range(self, mode, number):
        """Return ``(ListeningRange, ReciterPathTemplate)`` for a selection"""
        validate_selection(mode, number)
        if self.reciter_id is None:
            raise ValueError("No reciter selected")

        if mode == "chapter":
            count = self.chapter_table().verse_count(number)
            if count is None:
                raise DataIncompleteError(number)
            return ListeningRange(VersePosition(number, 1), count), self.reciter_template()

        data = self.content.get_audio_files(self.reciter_id, mode, number)
        files = data["audio_files"]
        if not files:
            raise ContentServiceError(f"No audio files for {mode} {number}")
        first = files[0]
        start = VersePosition.from_key(first["verse_key"])
        total = data["pagination"].get("total_records") or len(files)
        self._template = self._derive(first["url"])
        return ListeningRange(start, total), self._template

    def verse_texts(self, mode, number):
        """Map of verse key to Uthmani text for display"""
        return {
            verse["verse_key"]: verse.get("text_uthmani", "")
            for verse in self.content.get_verses(mode, number)
        }
