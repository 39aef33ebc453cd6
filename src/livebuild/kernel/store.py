"""Artifact store: the most recent value of each derived artifact.

The store is an explicit object owned by one orchestrator; there is no
module-level instance. It enforces a single invariant: an artifact is present
only if every artifact it depends on is present. Invalidating an artifact
therefore also invalidates everything transitively depending on it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Set

from .errors import ArtifactAbsentError, OrphanedArtifactError
from .graph import ArtifactGraph
from .kinds import ArtifactKind, InputKind, node_key


@dataclass(frozen=True)
class ArtifactRecord:
    """A published artifact value.

    ``version`` is the store-wide publish counter at which this value became
    present; records are replaced wholesale, never mutated.
    """
    kind: ArtifactKind
    value: Any
    version: int
    produced_at: datetime


class ArtifactStore:
    """Process-wide mapping from artifact kind to its current record."""

    def __init__(self, graph: ArtifactGraph):
        self.graph = graph
        self._records: Dict[ArtifactKind, ArtifactRecord] = {}
        self._version = 0
        self._lock = threading.RLock()
        self._slot_locks: Dict[ArtifactKind, threading.Lock] = {
            kind: threading.Lock() for kind in ArtifactKind
        }

    @property
    def version(self) -> int:
        """Number of publishes so far."""
        return self._version

    def slot_lock(self, kind: ArtifactKind) -> threading.Lock:
        """Lock guarding the read-modify-publish sequence of one slot."""
        return self._slot_locks[kind]

    def get(self, kind: ArtifactKind) -> Optional[ArtifactRecord]:
        """Return the record for ``kind`` or None when absent."""
        with self._lock:
            return self._records.get(kind)

    def value(self, kind: ArtifactKind) -> Any:
        """Return the value for ``kind``, raising if absent."""
        record = self.get(kind)
        if record is None:
            raise ArtifactAbsentError(kind)
        return record.value

    def is_present(self, kind: ArtifactKind) -> bool:
        with self._lock:
            return kind in self._records

    def missing_dependencies(self, kind: ArtifactKind) -> Set[ArtifactKind]:
        """Artifact dependencies of ``kind`` that are currently absent."""
        with self._lock:
            return {
                dep for dep in self.graph.get_dependencies(kind)
                if not isinstance(dep, InputKind) and dep not in self._records
            }

    def publish(self, kind: ArtifactKind, value: Any) -> ArtifactRecord:
        """Store a new value for ``kind`` and bump the store version.

        Raises:
            OrphanedArtifactError: If any artifact dependency is absent
        """
        with self._lock:
            missing = self.missing_dependencies(kind)
            if missing:
                raise OrphanedArtifactError(kind, missing)
            self._version += 1
            record = ArtifactRecord(
                kind=kind,
                value=value,
                version=self._version,
                produced_at=datetime.now(timezone.utc),
            )
            self._records[kind] = record
            return record

    def invalidate(self, kind: ArtifactKind) -> Set[ArtifactKind]:
        """Mark ``kind`` and all transitive dependents absent.

        Returns:
            The set of artifacts that were present and are now absent.
        """
        with self._lock:
            targets = {kind} | self.graph.get_transitive_dependents(kind)
            removed = {k for k in targets if k in self._records}
            for k in removed:
                del self._records[k]
            return removed

    def snapshot(self) -> Dict[ArtifactKind, ArtifactRecord]:
        """Copy of all present records."""
        with self._lock:
            return dict(self._records)

    def check_consistency(self) -> Set[ArtifactKind]:
        """Return present artifacts whose dependencies are absent (should be empty)."""
        with self._lock:
            return {kind for kind in self._records if self.missing_dependencies(kind)}

    def __iter__(self) -> Iterator[ArtifactRecord]:
        snapshot = self.snapshot()
        return iter([snapshot[k] for k in sorted(snapshot, key=node_key)])

    def __contains__(self, kind: object) -> bool:
        with self._lock:
            return kind in self._records
