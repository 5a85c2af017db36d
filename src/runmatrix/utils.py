from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

_log = logging.getLogger("runmatrix.utils")

_YAML_SUFFIXES = {".yaml", ".yml"}
_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


class _DocumentLoader(yaml.SafeLoader):
    """Safe loader that leaves dates and times as the strings they were written as."""


_DocumentLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def compact_json(value: Any) -> str:
    # Key order is kept as-is: run equality is exact serialized-form equality.
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def is_yaml_path(path: Path) -> bool:
    return Path(path).suffix.lower() in _YAML_SUFFIXES


def read_document(path: Path) -> Any:
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if is_yaml_path(path):
        return yaml.load(text, Loader=_DocumentLoader)
    return json.loads(text)


def render_document(value: Any, *, as_yaml: bool = False) -> str:
    if as_yaml:
        return yaml.safe_dump(value, sort_keys=False, allow_unicode=True)
    return json.dumps(value, indent=2, ensure_ascii=False) + "\n"


def atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)
    except Exception:
        # Clean up the temp file so we don't leave partial writes on disk.
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            _log.warning("Failed to remove temp file %s", tmp)
        raise
