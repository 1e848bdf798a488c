"""
Data models for the localization studio.
"""

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class Caption:
    """A time-aligned caption segment.

    ``id`` and the ``start``/``end`` interval are fixed once the caption is
    produced by transcription; only ``text`` may be edited afterwards.
    """

    id: str
    start: float  # seconds
    end: float  # seconds
    text: str
    _frozen: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.start = float(self.start)
        self.end = float(self.end)
        if not self.start < self.end:
            raise ValueError(
                f"Caption {self.id!r} must start before it ends ({self.start} >= {self.end})"
            )
        self._frozen = True

    def __setattr__(self, name: str, value) -> None:
        if name in ("id", "start", "end") and getattr(self, "_frozen", False):
            raise AttributeError(f"Caption.{name} is read-only")
        super().__setattr__(name, value)

    @property
    def duration(self) -> float:
        return self.end - self.start

    def contains(self, timestamp: float) -> bool:
        """Inclusive on both ends, so touching captions leave no gap."""
        return self.start <= timestamp <= self.end

    def copy(self) -> "Caption":
        return Caption(id=self.id, start=self.start, end=self.end, text=self.text)

    def to_dict(self) -> dict:
        return {"id": self.id, "start": self.start, "end": self.end, "text": self.text}


class ProcessingStatus(str, Enum):
    """What the studio session is currently busy with."""

    IDLE = "idle"
    EXTRACTING_AUDIO = "extracting_audio"
    TRANSCRIBING = "transcribing"
    TRANSLATING = "translating"
    GENERATING_SPEECH = "generating_speech"
    RENDERING = "rendering"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class Language:
    code: str
    name: str


SUPPORTED_LANGUAGES: tuple[Language, ...] = (
    Language("ur-PK", "Urdu"),
    Language("hi-IN", "Hindi"),
    Language("es-ES", "Spanish"),
    Language("fr-FR", "French"),
    Language("de-DE", "German"),
    Language("zh-CN", "Chinese"),
    Language("ja-JP", "Japanese"),
    Language("ar-SA", "Arabic"),
    Language("pt-BR", "Portuguese"),
    Language("it-IT", "Italian"),
    Language("en-US", "English"),
)
