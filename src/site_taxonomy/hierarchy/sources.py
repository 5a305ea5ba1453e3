from __future__ import annotations

import json
import logging
import os
from typing import Any

logger = logging.getLogger(__name__)


def load_raw_nodes(path: str) -> list[Any]:
    """Read catalog records from a local file.

    Formats:
      - *.json: a list of records (objects or URL strings), or an object
        with a "urls"/"nodes" list
      - *.jsonl: one record per line
      - anything else: one URL per line, '#' starts a comment

    Records are returned as-is; validation happens in the builder so a bad
    record becomes a warning rather than a load failure.
    """
    ext = os.path.splitext(path)[1].lower()
    with open(path, encoding="utf-8", errors="replace") as f:
        if ext == ".json":
            data = json.load(f)
            if isinstance(data, dict):
                data = data.get("nodes") or data.get("urls") or []
            if not isinstance(data, list):
                raise ValueError(f"{path}: expected a JSON list of records")
            return data

        records: list[Any] = []
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if ext == ".jsonl":
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("%s:%d: skipping malformed JSON line", path, lineno)
                continue
            records.append(line)
        return records
