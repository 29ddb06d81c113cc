from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..errors import PersistenceError
from ..models.export import FeedbackRecord
from .exporter import ExportDocument

log = logging.getLogger("app")

MAX_NAME_ATTEMPTS = 1000


def _micro_stamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now:%f}"


def write_unique(directory: Path, stem: str, suffix: str, text: str, now: Optional[datetime] = None) -> Path:
    """Create ``<stem>-<usec>[_<n>]<suffix>`` in ``directory`` without overwriting.

    ``now`` should be the same clock reading the stem was built from, so the
    seconds and microseconds in one name agree. Exclusive create; on
    collision the counter goes up and the write is retried.
    """
    try:
        directory.mkdir(parents=True, exist_ok=True)
        base = f"{stem}-{_micro_stamp(now)}"
        for n in range(MAX_NAME_ATTEMPTS):
            path = directory / (f"{base}{suffix}" if n == 0 else f"{base}_{n}{suffix}")
            try:
                with path.open("x", encoding="utf-8") as fh:
                    fh.write(text)
                return path
            except FileExistsError:
                continue
    except OSError as e:
        raise PersistenceError(f"{directory}: {e}")
    raise PersistenceError(f"no free filename for {stem} in {directory}")


def save_export(directory: Path, doc: ExportDocument) -> Path:
    path = write_unique(directory, doc.stem, ".txt", doc.text, now=doc.generated_at)
    log.info(f"saved content to: {path.name}")
    return path


def feedback_stem(now: datetime) -> str:
    return f"feedback_{now:%Y-%m-%dT%H-%M-%S}"


def save_feedback(directory: Path, record: FeedbackRecord) -> Path:
    now = datetime.now(timezone.utc)
    body = json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False)
    path = write_unique(directory, feedback_stem(now), ".json", body, now=now)
    log.info(f"saved feedback to: {path.name}")
    return path
