"""
=============================================================================
CHANGE DETECTOR
=============================================================================

Watches the served root with watchdog and turns raw filesystem events into
batches of FileChangeEvent for the reload trigger.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   watchdog Observer thread                                          │
    │        │  created / modified / deleted / moved                      │
    │        ▼                                                             │
    │   _ObserverHandler ──► normalize ──► ignore patterns? ──► drop      │
    │        │                                                             │
    │        ▼                                                             │
    │   batched:    buffer += event, restart the debounce timer           │
    │               timer fires 250ms after the LAST event                │
    │               └──► callback([event, event, ...])                    │
    │                                                                      │
    │   immediate:  callback([event])                                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
DEBOUNCE
=============================================================================

Editors save in bursts: a temp file is written, renamed over the original,
and the directory is touched. Each burst must produce one reload, so every
event pushes the delivery back by ``batch_delay``:

    t=0ms    created  .index.html.swp    buffer=[1]  timer → 250
    t=3ms    moved    → index.html       buffer=[3]  timer → 253
    t=5ms    modified index.html         buffer=[4]  timer → 255
    t=255ms  deliver 4 events, buffer=[]

The buffer and timer are guarded by one lock. Each timer carries the
generation number current when it was armed; a timer that fires after a
newer event re-armed the debounce finds a different generation and does
nothing. Deliveries are serialized by a second lock, so a batch never
overlaps the previous one even when the callback is slow.

=============================================================================
STATE MACHINE
=============================================================================

    Idle ──start()──► Watching ──stop()──► Idle

start() while Watching logs a warning and does nothing. stop() while Idle
does nothing. stop() flushes the pending batch before releasing the watch.

A callback that raises is logged and the detector keeps running.

=============================================================================
"""

import fnmatch
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from .config import DEFAULT_IGNORE_PATTERNS


logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"
    ADD_DIR = "addDir"
    UNLINK_DIR = "unlinkDir"


@dataclass(frozen=True)
class FileChangeEvent:
    """
    One observed change.

    Attributes:
        type: What happened.
        path: Absolute path of the affected file or directory.
        stat: ``os.stat_result`` when ``always_stat`` is on and the path
              still exists, else None.
        timestamp: When the detector saw the event (``time.time()``).
    """

    type: ChangeType
    path: str
    stat: Optional[os.stat_result] = None
    timestamp: float = field(default_factory=time.time)


ChangeCallback = Callable[[List[FileChangeEvent]], None]


class Subscription:
    """
    Handle returned by ChangeDetector.on_change().

    Only one subscription is active at a time; registering a new callback
    replaces the old one and cancelling a replaced handle does nothing.
    """

    def __init__(self, detector: "ChangeDetector", callback: ChangeCallback):
        self._detector = detector
        self.callback = callback

    @property
    def active(self) -> bool:
        return self._detector._subscription is self

    def cancel(self) -> None:
        self._detector._unsubscribe(self)


class _ObserverHandler(FileSystemEventHandler):
    """Translates watchdog events and passes them to the detector."""

    def __init__(self, detector: "ChangeDetector"):
        super().__init__()
        self._detector = detector

    def on_any_event(self, event: FileSystemEvent) -> None:
        for change_type, path in _translate(event):
            self._detector._on_raw_event(change_type, path)


def _translate(event: FileSystemEvent) -> Iterable[tuple[ChangeType, str]]:
    """
    watchdog event → (ChangeType, path) pairs.

    Directory "modified" events (a child changed) and open/close events
    carry no information of their own and are dropped. A move is reported
    as an unlink of the source followed by an add of the destination.
    """
    src = os.fsdecode(event.src_path)
    is_dir = event.is_directory

    if event.event_type == EVENT_TYPE_CREATED:
        return [(ChangeType.ADD_DIR if is_dir else ChangeType.ADD, src)]

    if event.event_type == EVENT_TYPE_MODIFIED:
        return [] if is_dir else [(ChangeType.CHANGE, src)]

    if event.event_type == EVENT_TYPE_DELETED:
        return [(ChangeType.UNLINK_DIR if is_dir else ChangeType.UNLINK, src)]

    if event.event_type == EVENT_TYPE_MOVED:
        dest = os.fsdecode(event.dest_path)
        if is_dir:
            return [(ChangeType.UNLINK_DIR, src), (ChangeType.ADD_DIR, dest)]
        return [(ChangeType.UNLINK, src), (ChangeType.ADD, dest)]

    return []


class ChangeDetector:
    """
    Debounced, filtered filesystem watcher.

    Usage:
        detector = ChangeDetector()
        subscription = detector.on_change(lambda batch: channel.broadcast())
        detector.start(root, ignore_patterns)
        ...
        detector.stop()
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._delivery_lock = threading.RLock()

        self._observer = None
        self._handler = _ObserverHandler(self)
        self._watches: Dict[str, object] = {}
        self._root: Optional[str] = None
        self._ignore_patterns: List[str] = []

        self._subscription: Optional[Subscription] = None

        self._buffer: List[FileChangeEvent] = []
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

        self.batch_events = True
        self.batch_delay = 0.25
        self.use_polling = False
        self.always_stat = False

        self.batches_delivered = 0
        self.callback_errors = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(
        self,
        root: str,
        ignore_patterns: Optional[Sequence[str]] = None,
        batch_events: bool = True,
        batch_delay: float = 0.25,
        use_polling: bool = False,
        always_stat: bool = False,
    ) -> None:
        """
        Begin watching ``root`` recursively.

        Args:
            root: Directory to watch.
            ignore_patterns: Globs matched against the "/"-prefixed path
                             relative to the root. Defaults to
                             DEFAULT_IGNORE_PATTERNS.
            batch_events: Debounce into batches (True) or deliver each
                          event on its own (False).
            batch_delay: Debounce window in seconds.
            use_polling: Use watchdog's PollingObserver (network drives,
                         containers without inotify).
            always_stat: Attach ``os.stat_result`` to events.

        Raises:
            FileNotFoundError: ``root`` is not a directory.
        """
        if self._observer is not None:
            logger.warning(f"Change detector is already watching {self._root}")
            return

        root = os.path.realpath(root)
        if not os.path.isdir(root):
            raise FileNotFoundError(f"Cannot watch {root}: not a directory")

        with self._lock:
            self._root = root
            self._ignore_patterns = list(
                DEFAULT_IGNORE_PATTERNS if ignore_patterns is None else ignore_patterns
            )
            self._buffer = []
            self._generation += 1

        self.batch_events = batch_events
        self.batch_delay = batch_delay
        self.use_polling = use_polling
        self.always_stat = always_stat

        observer = PollingObserver() if use_polling else Observer()
        self._watches = {root: observer.schedule(self._handler, root, recursive=True)}
        observer.daemon = True
        observer.start()
        self._observer = observer

        mode = f"batched, {int(batch_delay * 1000)}ms" if batch_events else "immediate"
        logger.info(f"Watching {root} ({mode}, {len(self._ignore_patterns)} ignore patterns)")

    def stop(self) -> None:
        """
        Stop watching.

        Any pending batch is delivered first, then the callback is cleared.
        """
        observer = self._observer
        if observer is None:
            return

        self._observer = None
        observer.stop()
        if threading.current_thread() is not observer:
            observer.join(timeout=2.0)

        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            pending = self._buffer
            self._buffer = []
            self._generation += 1

        if pending:
            self._deliver(pending)

        self._watches = {}
        self._subscription = None
        logger.info(f"Stopped watching {self._root}")

    def restart(self) -> None:
        """Stop and start again with the same root, options and callback."""
        if self._root is None:
            return

        subscription = self._subscription
        root = self._root
        patterns = self.get_ignore_patterns()

        self.stop()
        self.start(
            root,
            patterns,
            batch_events=self.batch_events,
            batch_delay=self.batch_delay,
            use_polling=self.use_polling,
            always_stat=self.always_stat,
        )
        self._subscription = subscription

    def is_watching(self) -> bool:
        return self._observer is not None

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def on_change(self, callback: ChangeCallback) -> Subscription:
        """
        Register the batch callback, replacing any previous one.

        The callback runs on the detector's timer thread (batched) or the
        observer thread (immediate), never concurrently with itself.
        """
        subscription = Subscription(self, callback)
        self._subscription = subscription
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if self._subscription is subscription:
            self._subscription = None

    # =========================================================================
    # PATHS AND PATTERNS
    # =========================================================================

    def add_path(self, path: str) -> bool:
        """Watch an extra directory (recursively) alongside the root."""
        observer = self._observer
        if observer is None:
            logger.warning(f"Cannot add {path}: change detector is not running")
            return False

        path = os.path.realpath(path)
        if path in self._watches:
            return True
        try:
            self._watches[path] = observer.schedule(self._handler, path, recursive=True)
        except OSError as e:
            logger.error(f"Cannot watch {path}: {e}")
            return False
        logger.debug(f"Watching additional path {path}")
        return True

    def remove_path(self, path: str) -> bool:
        observer = self._observer
        path = os.path.realpath(path)
        watch = self._watches.pop(path, None)
        if observer is None or watch is None:
            return False
        try:
            observer.unschedule(watch)
        except KeyError:
            # Already gone (the directory was deleted)
            pass
        logger.debug(f"Stopped watching {path}")
        return True

    def get_watched_paths(self) -> List[str]:
        return list(self._watches)

    def add_ignore_pattern(self, pattern: str) -> None:
        """Applies to the next event; no restart needed."""
        with self._lock:
            if pattern not in self._ignore_patterns:
                self._ignore_patterns.append(pattern)

    def remove_ignore_pattern(self, pattern: str) -> None:
        with self._lock:
            if pattern in self._ignore_patterns:
                self._ignore_patterns.remove(pattern)

    def get_ignore_patterns(self) -> List[str]:
        with self._lock:
            return list(self._ignore_patterns)

    def is_ignored(self, path: str) -> bool:
        """
        Match ``path`` against the ignore patterns.

        The path is made relative to the watched root it lives under and
        prefixed with "/", and tried both as-is and with a trailing "/" so
        that "**/.git/**" also covers the ".git" directory itself.
        """
        relative = self._relative(path)
        candidates = ("/" + relative, "/" + relative + "/")
        with self._lock:
            patterns = list(self._ignore_patterns)
        return any(
            fnmatch.fnmatch(candidate, pattern)
            for pattern in patterns
            for candidate in candidates
        )

    def _relative(self, path: str) -> str:
        roots = list(self._watches) or ([self._root] if self._root else [])
        # Longest first so a nested extra path wins over the main root
        for root in sorted(roots, key=len, reverse=True):
            if path == root:
                return ""
            if path.startswith(root.rstrip(os.sep) + os.sep):
                return os.path.relpath(path, root).replace(os.sep, "/")
        return path.replace(os.sep, "/").lstrip("/")

    # =========================================================================
    # EVENT PATH
    # =========================================================================

    def _on_raw_event(self, change_type: ChangeType, path: str) -> None:
        if self.is_ignored(path):
            return

        stat = None
        if self.always_stat and change_type not in (ChangeType.UNLINK, ChangeType.UNLINK_DIR):
            try:
                stat = os.stat(path)
            except OSError:
                # Gone again before we looked
                pass

        event = FileChangeEvent(type=change_type, path=path, stat=stat)
        logger.debug(f"File {change_type.value}: {path}")

        if not self.batch_events:
            self._deliver([event])
            return

        with self._lock:
            self._buffer.append(event)
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.batch_delay, self._flush, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _flush(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            batch = self._buffer
            self._buffer = []
            self._timer = None

        if batch:
            self._deliver(batch)

    def _deliver(self, batch: List[FileChangeEvent]) -> None:
        with self._delivery_lock:
            subscription = self._subscription
            if subscription is None:
                logger.debug(f"Dropping {len(batch)} change event(s): no callback registered")
                return

            try:
                subscription.callback(batch)
                self.batches_delivered += 1
            except Exception:
                self.callback_errors += 1
                logger.exception(f"Change callback failed on a batch of {len(batch)} event(s)")
