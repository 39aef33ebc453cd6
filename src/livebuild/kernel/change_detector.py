"""Detect meaningful content changes of watched inputs.

Comparison is based on content fingerprints (see ``hash_utils``), never on
filesystem metadata: editors frequently touch files without altering them,
and a spurious change would trigger expensive downstream recomputation.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from livebuild._internal.logging import get_logger

from .hash_utils import Fingerprinter, canonicalize_json, fingerprint_content, hash_bytes
from .kinds import InputKind

logger = get_logger(__name__)


@dataclass(frozen=True)
class WatchedInputState:
    """Last recorded state of a watched input."""
    kind: InputKind
    path: Path
    fingerprint: str
    recorded_at: datetime


@dataclass(frozen=True)
class ChangeResult:
    """Outcome of polling one watched input.

    ``content`` holds the bytes the fingerprint was computed from (None only
    when the file was unreadable), so the caller derives from exactly the
    content that was judged changed.
    """
    kind: InputKind
    changed: bool
    content: Optional[bytes] = None
    fingerprint: Optional[str] = None
    error: Optional[str] = None


class ChangeDetector:
    """Tracks the last-seen fingerprint of each watched input."""

    def __init__(
        self,
        paths: Mapping[InputKind, Union[str, Path]],
        fingerprinters: Optional[Mapping[InputKind, Fingerprinter]] = None,
        cache_path: Optional[Union[str, Path]] = None,
    ):
        self.paths: Dict[InputKind, Path] = {kind: Path(p) for kind, p in paths.items()}
        self.fingerprinters: Dict[InputKind, Fingerprinter] = dict(fingerprinters or {})
        self.cache_path = Path(cache_path) if cache_path else None
        self._states: Dict[InputKind, WatchedInputState] = {}
        self._lock = threading.Lock()

    def path_for(self, kind: InputKind) -> Path:
        return self.paths[kind]

    def state(self, kind: InputKind) -> Optional[WatchedInputState]:
        with self._lock:
            return self._states.get(kind)

    def poll(self, kind: InputKind) -> ChangeResult:
        """Read the input and compare its fingerprint with the recorded one.

        On a change the new fingerprint is recorded immediately, even if the
        content later fails to parse: a broken file is still the current state.
        An unreadable file is logged and reported as unchanged, leaving state
        untouched.
        """
        path = self.paths[kind]
        try:
            content = path.read_bytes()
        except OSError as e:
            logger.warning(
                "input_unreadable",
                input=kind.value,
                path=str(path),
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return ChangeResult(kind=kind, changed=False, error=str(e))

        fingerprint = fingerprint_content(content, self.fingerprinters.get(kind, hash_bytes))
        with self._lock:
            previous = self._states.get(kind)
            if previous is not None and previous.fingerprint == fingerprint:
                return ChangeResult(kind=kind, changed=False, content=content, fingerprint=fingerprint)
            self._states[kind] = WatchedInputState(
                kind=kind,
                path=path,
                fingerprint=fingerprint,
                recorded_at=datetime.now(timezone.utc),
            )
        logger.debug("input_fingerprint_recorded", input=kind.value, fingerprint=fingerprint)
        return ChangeResult(kind=kind, changed=True, content=content, fingerprint=fingerprint)

    def has_changed(self, kind: InputKind) -> bool:
        """True if the input's meaningful content changed since the last check."""
        return self.poll(kind).changed

    def forget(self, kind: InputKind) -> None:
        """Drop the recorded fingerprint so the next poll reports a change."""
        with self._lock:
            self._states.pop(kind, None)

    def hydrate(self) -> int:
        """Load fingerprints persisted by a previous run.

        Returns:
            Number of fingerprints loaded (0 if there is no usable cache file).
        """
        if self.cache_path is None or not self.cache_path.exists():
            return 0
        try:
            data = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("fingerprint_cache_unreadable", path=str(self.cache_path), error_message=str(e))
            return 0

        loaded = 0
        with self._lock:
            for kind in self.paths:
                fingerprint = data.get("fingerprints", {}).get(kind.value)
                if isinstance(fingerprint, str):
                    self._states[kind] = WatchedInputState(
                        kind=kind,
                        path=self.paths[kind],
                        fingerprint=fingerprint,
                        recorded_at=datetime.now(timezone.utc),
                    )
                    loaded += 1
        logger.info("fingerprint_cache_hydrated", path=str(self.cache_path), loaded=loaded)
        return loaded

    def save(self) -> None:
        """Persist recorded fingerprints to the cache file, if configured."""
        if self.cache_path is None:
            return
        with self._lock:
            payload = {
                "fingerprints": {kind.value: state.fingerprint for kind, state in self._states.items()},
            }
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        self.cache_path.write_text(canonicalize_json(payload), encoding="utf-8")
