"""Change detection and dependency-ordered regeneration kernel."""

from .kinds import ArtifactKind, InputKind
from .graph import ArtifactGraph, DerivationRule, Effect
from .store import ArtifactStore, ArtifactRecord
from .change_detector import ChangeDetector
from .debounce import Debouncer
from .orchestrator import Orchestrator, ChainReport

__all__ = [
    "ArtifactKind",
    "InputKind",
    "ArtifactGraph",
    "DerivationRule",
    "Effect",
    "ArtifactStore",
    "ArtifactRecord",
    "ChangeDetector",
    "Debouncer",
    "Orchestrator",
    "ChainReport",
]
