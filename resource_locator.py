# resource_locator.py
from collections import namedtuple
from urllib.parse import urlsplit

# Directory prefix under which one reciter's per-verse files are published
ReciterPathTemplate = namedtuple("ReciterPathTemplate", ["scheme_authority", "relative_directory"])

# ``parsed`` is False when the template came from the string-split fallback
TemplateResult = namedtuple("TemplateResult", ["template", "parsed"])


def audio_file_name(chapter, verse):
    """Per-verse file name, e.g. 002255.mp3"""
    return f"{chapter:03}{verse:03}.mp3"


def normalize_url(url, base_url):
    """Make a listing URL absolute: protocol-relative gets https, bare paths get the base"""
    if url.startswith("//"):
        return f"https:{url}"
    if not url.startswith(("http://", "https://")):
        return f"{base_url.rstrip('/')}/{url.lstrip('/')}"
    return url


def derive_template(audio_url, base_url):
    """Derive a reciter's path template from any of its known audio URLs.

    Never raises: if the URL cannot be parsed, the directory is taken with a
    plain split on the last "/" and the declared base authority is kept, so
    the worst outcome is a locator that 404s.
    """
    full_url = normalize_url(audio_url, base_url)
    try:
        parts = urlsplit(full_url)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"No scheme or authority in {full_url}")
        parts.port  # raises ValueError on a malformed port
        path = parts.path
        directory = path[:path.rfind("/") + 1].lstrip("/")
        template = ReciterPathTemplate(f"{parts.scheme}://{parts.netloc}/", directory)
        return TemplateResult(template, True)
    except ValueError:
        directory = audio_url[:audio_url.rfind("/") + 1]
        authority = base_url if base_url.endswith("/") else f"{base_url}/"
        return TemplateResult(ReciterPathTemplate(authority, directory), False)


def locate(template, position):
    """Audio URL of one verse for a reciter"""
    chapter, verse = position
    return f"{template.scheme_authority}{template.relative_directory}{audio_file_name(chapter, verse)}"
