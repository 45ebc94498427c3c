# errors.py
"""
Error taxonomy shared by the sequencing core, the credential cache and the
content client. Every error carries a plain reason string so callers never
see the underlying transport exception types.
"""


class AyahPlayerError(Exception):
    """Base class for all player errors"""

    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason

    def __str__(self):
        return self.reason


class ResolutionError(AyahPlayerError):
    """A linear step could not be mapped to a verse"""


class DataIncompleteError(ResolutionError):
    """Chapter lengths needed for resolution are not loaded yet"""

    def __init__(self, chapter):
        super().__init__(f"Verse count for chapter {chapter} is not available")
        self.chapter = chapter


class OutOfRangeError(ResolutionError):
    """Offset runs past the last verse of chapter 114 or is negative"""


class PlaybackError(AyahPlayerError):
    """Media transport failed to buffer or play a step"""

    def __init__(self, reason, step=None, url=None):
        super().__init__(reason)
        self.step = step
        self.url = url


class CredentialError(AyahPlayerError):
    """Access token could not be obtained"""


class ContentServiceError(AyahPlayerError):
    """Upstream content listing failed"""

    def __init__(self, reason, status=None):
        super().__init__(reason)
        self.status = status
