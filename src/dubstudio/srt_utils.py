"""
Caption persistence: SRT for subtitle tools, JSON for lossless round trips.
"""

import json
import logging
import re
from collections.abc import Iterable
from pathlib import Path

from .captions import normalize_segments
from .models import Caption

logger = logging.getLogger("dubstudio")

_TIMING_RE = re.compile(r"(\d\d:\d\d:\d\d[,.]\d\d\d)\s+-->\s+(\d\d:\d\d:\d\d[,.]\d\d\d)")


def format_timestamp(t: float) -> str:
    total_ms = int(round(max(0.0, t) * 1000))
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return f"{h:02}:{m:02}:{s:02},{ms:03}"


def parse_timestamp(ts: str) -> float:
    h, m, rest = ts.replace(".", ",").split(":")
    s, ms = rest.split(",")
    return int(h) * 3600 + int(m) * 60 + int(s) + int(ms) / 1000.0


def write_srt(captions: Iterable[Caption], path: str | Path) -> None:
    """Write captions to SRT file."""
    with open(path, "w", encoding="utf-8") as f:
        for i, c in enumerate(captions, 1):
            f.write(f"{i}\n{format_timestamp(c.start)} --> {format_timestamp(c.end)}\n{c.text}\n\n")


def parse_srt(path: str | Path) -> list[Caption]:
    """Parse SRT file into captions (ids follow playback order)."""
    with open(path, encoding="utf-8-sig") as f:
        raw = f.read()

    blocks = re.split(r"\n\s*\n", raw.strip(), flags=re.M)
    segments: list[dict] = []
    for b in blocks:
        lines = [ln for ln in b.splitlines() if ln.strip()]
        if lines and re.match(r"^\d+$", lines[0].strip()):
            lines = lines[1:]
        if not lines:
            continue
        m = _TIMING_RE.match(lines[0].strip())
        if not m:
            logger.warning(f"Skipping SRT block without timing line: {lines[0][:60]!r}")
            continue
        segments.append(
            {
                "start": parse_timestamp(m.group(1)),
                "end": parse_timestamp(m.group(2)),
                "text": " ".join(ln.strip() for ln in lines[1:]),
            }
        )
    return normalize_segments(segments)


def write_captions_json(captions: Iterable[Caption], path: str | Path) -> None:
    payload = {"captions": [c.to_dict() for c in captions]}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def read_captions_json(path: str | Path) -> list[Caption]:
    """Read captions written by ``write_captions_json``, keeping their ids."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    items = data.get("captions", []) if isinstance(data, dict) else data
    try:
        return [
            Caption(id=str(item["id"]), start=item["start"], end=item["end"], text=item.get("text", ""))
            for item in items
        ]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed caption file {path}: {e}") from e
