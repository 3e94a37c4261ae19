# quotedoc/utils/text.py
import re

_invalid_filename_chars = re.compile(r'[^A-Za-z0-9\-\_\(\)\[\]\s]')


def sanitize_filename(name: str) -> str:
    """
    Remove characters unsafe for filenames and collapse spaces.
    Example: "Acme Inc. (EU)" -> "Acme_Inc_(EU)"
    """
    if not name:
        return "document"
    cleaned = _invalid_filename_chars.sub("", name)
    cleaned = re.sub(r"\s+", "_", cleaned).strip("_")
    return cleaned or "document"
