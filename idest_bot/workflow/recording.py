"""Audio of speaking parts.

Recording happens in the Telegram client: a voice note (Opus in OGG) or an
uploaded audio file arrives as bytes and becomes an immutable ``AudioFile``
named after the submit field it answers.
"""
from dataclasses import dataclass
from typing import Optional

from .exceptions import RecordingError

DEFAULT_MIME_TYPE = "audio/webm"


@dataclass(frozen=True)
class AudioFile:
    """Named audio blob ready for the multipart submit."""
    filename: str
    content: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def size_mb(self) -> float:
        return round(self.size / 1024 / 1024, 2)


def extension_for(mime_type: Optional[str]) -> str:
    return "ogg" if "ogg" in (mime_type or "") else "webm"


def audio_file_from_upload(target: str, content: bytes, mime_type: Optional[str]) -> AudioFile:
    """Wrap a voice note or an uploaded file as the recording of ``target``."""
    if not content:
        raise RecordingError("File audio trống")
    mime = mime_type or DEFAULT_MIME_TYPE
    return AudioFile(filename=f"{target}.{extension_for(mime)}", content=content, mime_type=mime)
