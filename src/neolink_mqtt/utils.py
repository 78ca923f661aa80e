from __future__ import annotations

import base64
import binascii
import re

_DATA_URI_PREFIX = re.compile(r"^data:image/\w+;base64,")
_CAMEL_WORD = re.compile(r"[A-Z][a-z]+|[A-Z]+(?![a-z])|[a-z]+|\d+")


def friendly_camera_name(camera_name: str) -> str:
    """Split a neolink camera name into words for display.

    "GarageCam" -> "Garage Cam", "front_door" -> "front door"
    """
    words = _CAMEL_WORD.findall(camera_name)
    return " ".join(words) if words else camera_name


def strip_data_uri(preview: str) -> str:
    """Remove a leading ``data:image/<fmt>;base64,`` prefix if present."""
    return _DATA_URI_PREFIX.sub("", preview, count=1)


def decode_preview(preview: str) -> bytes:
    """Decode a neolink preview payload to raw image bytes.

    Raises:
        ValueError: payload is not valid base64

    """
    try:
        return base64.b64decode(strip_data_uri(preview).strip(), validate=True)
    except binascii.Error as err:
        msg = f"invalid base64 preview: {err}"
        raise ValueError(msg) from err

