"""
Caption store: the ordered, editable set of captions shared by the studio.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence

from .errors import TranslationError
from .models import Caption

logger = logging.getLogger("dubstudio")

# Applied when a recognizer returns a segment without an end timestamp.
DEFAULT_SEGMENT_SECS = 2.0


def _field(seg, name: str, default=None):
    if isinstance(seg, Mapping):
        return seg.get(name, default)
    return getattr(seg, name, default)


def normalize_segments(segments: Iterable) -> list[Caption]:
    """Validate raw recognizer segments and turn them into start-ordered captions.

    Negative starts are clamped to 0, a missing end becomes
    ``start + DEFAULT_SEGMENT_SECS`` and segments with ``end <= start`` are
    dropped. Ids are assigned after sorting so they follow playback order.
    """
    kept: list[tuple[float, float, str]] = []
    for i, seg in enumerate(segments):
        raw_start = _field(seg, "start")
        raw_end = _field(seg, "end")
        text = str(_field(seg, "text", "") or "").strip()
        try:
            start = max(0.0, float(raw_start or 0.0))
            end = start + DEFAULT_SEGMENT_SECS if raw_end is None else float(raw_end)
        except (TypeError, ValueError):
            logger.warning(f"Dropping segment {i} with unreadable timestamps: {seg!r}")
            continue
        if end <= start:
            logger.warning(f"Dropping segment {i}: end {end:.3f} <= start {start:.3f}")
            continue
        kept.append((start, end, text))

    # sorted() is stable, equal starts keep recognizer order
    kept.sort(key=lambda s: s[0])
    return [Caption(id=f"caption-{n}", start=s, end=e, text=t) for n, (s, e, t) in enumerate(kept)]


class CaptionStore:
    """Ordered collection of captions in non-decreasing ``start`` order.

    Overlapping captions are tolerated; lookup resolves them by stored order.
    """

    def __init__(self, captions: Iterable[Caption] = ()) -> None:
        self._captions: list[Caption] = []
        self._by_id: dict[str, Caption] = {}
        self._load(captions)

    def _load(self, captions: Iterable[Caption]) -> None:
        ordered = sorted(captions, key=lambda c: c.start)
        by_id: dict[str, Caption] = {}
        for cap in ordered:
            if cap.id in by_id:
                raise ValueError(f"Duplicate caption id: {cap.id}")
            by_id[cap.id] = cap
        self._captions = ordered
        self._by_id = by_id

    def __len__(self) -> int:
        return len(self._captions)

    def __iter__(self) -> Iterator[Caption]:
        return iter(list(self._captions))

    def __bool__(self) -> bool:
        return bool(self._captions)

    def get(self, caption_id: str) -> Caption | None:
        return self._by_id.get(caption_id)

    def clear(self) -> None:
        self._captions = []
        self._by_id = {}

    def replace_all(self, segments: Iterable) -> list[Caption]:
        """Replace the whole set with freshly transcribed segments."""
        captions = normalize_segments(segments)
        self._load(captions)
        logger.info(f"Caption store now holds {len(captions)} captions")
        return list(self._captions)

    def load(self, captions: Iterable[Caption]) -> None:
        """Replace the whole set with already-built captions (e.g. read from disk)."""
        self._load(cap.copy() for cap in captions)

    def update_text(self, caption_id: str, text: str) -> Caption:
        cap = self._by_id.get(caption_id)
        if cap is None:
            raise KeyError(caption_id)
        cap.text = text
        return cap

    def apply_translation(self, translated: Sequence[Caption]) -> None:
        """Swap in translated text for every caption, or change nothing at all."""
        if len(translated) != len(self._captions):
            raise TranslationError(
                f"Translation returned {len(translated)} captions, expected {len(self._captions)}"
            )
        updates: dict[str, str] = {}
        for item in translated:
            current = self._by_id.get(item.id)
            if current is None:
                raise TranslationError(f"Translation returned unknown caption id {item.id!r}")
            if current.start != item.start or current.end != item.end:
                raise TranslationError(f"Translation changed the interval of caption {item.id!r}")
            updates[item.id] = item.text
        if len(updates) != len(self._captions):
            raise TranslationError("Translation returned duplicate caption ids")

        for cap in self._captions:
            cap.text = updates[cap.id]

    def snapshot(self) -> tuple[Caption, ...]:
        """Detached copies; later edits to the store do not reach them."""
        return tuple(cap.copy() for cap in self._captions)

    def find_overlaps(self) -> list[tuple[Caption, Caption]]:
        return [
            (a, b) for a, b in zip(self._captions, self._captions[1:]) if b.start < a.end
        ]

    def full_text(self, sep: str = ". ") -> str:
        return sep.join(cap.text for cap in self._captions if cap.text.strip())
