from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

import orjson

from .schemas import ExplorationLogEntry


LOG_FILENAME = "exploration-log.json"


@dataclass
class MergedLog:
    content: str
    recovered: bool
    parse_error: Optional[str] = None


def render(entries: List[Any]) -> str:
    return orjson.dumps(entries, option=orjson.OPT_INDENT_2).decode()


def new_log(entry: ExplorationLogEntry) -> str:
    return render([entry.model_dump(exclude_none=True)])


def merge_log(existing: str, entry: ExplorationLogEntry) -> MergedLog:
    """Append ``entry`` to a serialized log.

    Unparseable history is dropped (``recovered=True``) rather than failing
    the write. A record for the same job is replaced, so re-running a write
    never duplicates it.
    """
    record = entry.model_dump(exclude_none=True)
    try:
        prior = orjson.loads(existing)
    except orjson.JSONDecodeError as e:
        return MergedLog(content=render([record]), recovered=True, parse_error=str(e))

    entries = list(prior) if isinstance(prior, list) else [prior]
    entries = [e for e in entries if not (isinstance(e, dict) and e.get("jobId") == entry.jobId)]
    entries.append(record)
    return MergedLog(content=render(entries), recovered=False)
