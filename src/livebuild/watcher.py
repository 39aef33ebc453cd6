"""Watchdog-based filesystem watch for the configuration and schema files.

Raw events are only a trigger source: any create, modify or move-to event on
a watched path arms the debouncer for that input. Payloads are not
interpreted further.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from livebuild._internal.logging import get_logger
from livebuild.kernel.debounce import Debouncer
from livebuild.kernel.kinds import InputKind

logger = get_logger(__name__)


def _normalize(path: Union[str, bytes, Path]) -> Path:
    if isinstance(path, bytes):
        path = path.decode()
    return Path(path).resolve()


class InputEventHandler(FileSystemEventHandler):
    """Maps watchdog events on watched files to debouncer arms."""

    def __init__(self, paths: Mapping[InputKind, Path], debouncer: Debouncer):
        super().__init__()
        self.debouncer = debouncer
        self._kinds: Dict[Path, InputKind] = {_normalize(p): kind for kind, p in paths.items()}

    def _kind_for(self, path) -> Optional[InputKind]:
        return self._kinds.get(_normalize(path))

    def _trigger(self, path, event_type: str) -> None:
        kind = self._kind_for(path)
        if kind is None:
            return
        logger.debug("raw_change_event", input=kind.value, event_type=event_type, path=str(path))
        self.debouncer.arm(kind)

    def on_created(self, event: FileSystemEvent) -> None:
        if isinstance(event, DirCreatedEvent):
            return
        self._trigger(event.src_path, "created")

    def on_modified(self, event: FileSystemEvent) -> None:
        if isinstance(event, DirModifiedEvent):
            return
        self._trigger(event.src_path, "modified")

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors that save via rename land here with the watched file as dest
        if isinstance(event, DirMovedEvent):
            return
        self._trigger(event.dest_path, "moved")


class SourceWatcher:
    """Watches the parent directories of the watched files.

    Example:
        watcher = SourceWatcher(detector.paths, debouncer)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(self, paths: Mapping[InputKind, Path], debouncer: Debouncer):
        self.paths = {kind: Path(p) for kind, p in paths.items()}
        self.debouncer = debouncer
        self.handler = InputEventHandler(self.paths, debouncer)
        self._observer: Optional[Observer] = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            logger.warning("watcher_already_running")
            return
        observer = Observer()
        directories = sorted({_normalize(p).parent for p in self.paths.values()})
        for directory in directories:
            if not directory.exists():
                raise ValueError(f"Watched directory does not exist: {directory}")
            observer.schedule(self.handler, str(directory), recursive=False)
        observer.start()
        self._observer = observer
        logger.info(
            "watcher_started",
            directories=[str(d) for d in directories],
            inputs={kind.value: str(p) for kind, p in self.paths.items()},
        )

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        self.debouncer.cancel_all()
        logger.info("watcher_stopped")
