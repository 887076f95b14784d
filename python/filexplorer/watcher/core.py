"""
Watcher state machine: native notifications with a polling fallback.

States:
    native  - watchdog Observer (inotify / FSEvents / ReadDirectoryChangesW)
    polling - watchdog PollingObserver, snapshot diff every poll_interval

The only automatic transition is native -> polling, taken once when the OS
runs out of watch descriptors (EMFILE / ENOSPC). Transitions are
serialized: a request arriving while one is in flight waits for it.

Threading: watchdog calls back on its own threads. Every callback becomes
an FsEvent pushed onto one asyncio.Queue with call_soon_threadsafe, and a
single consumer task hands events to the index in arrival order.
"""

import asyncio
import errno
import logging
import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional

from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from filexplorer.ignore_patterns import IgnoreRules, is_unsupported_error
from filexplorer.watcher.handlers import IndexEventHandler, thread_safe_emitter
from filexplorer.watcher.types import FsEvent, FsEventKind, WatchMode

logger = logging.getLogger("filexplorer.watcher")

LIMIT_ERRNOS = frozenset({errno.EMFILE, errno.ENOSPC})
OBSERVER_JOIN_TIMEOUT = 5.0

EventCallback = Callable[[FsEvent], Awaitable[None]]
ObserverFactory = Callable[[WatchMode], object]


def is_limit_error(exc: Optional[BaseException]) -> bool:
    """True when exc signals watch descriptor / resource exhaustion."""
    if exc is None:
        return False
    if isinstance(exc, OSError) and exc.errno in LIMIT_ERRNOS:
        return True
    text = str(exc)
    return "EMFILE" in text or "ENOSPC" in text


class IndexWatcher:
    """
    Watches the root recursively and feeds typed events to a callback.

    Constructor Args:
    -----------------
    root: Directory to watch
    on_event: async callable receiving each FsEvent (never ERROR events)
    ignore_rules: events for ignored paths are dropped here
    poll_interval: seconds between snapshots in polling mode
    observer_factory: builds an observer for a mode (tests swap this)

    Raises:
    -------
    FileNotFoundError: If root doesn't exist
    ValueError: If root is not a directory
    TypeError: If on_event is not callable
    """

    def __init__(
        self,
        root: Path,
        on_event: EventCallback,
        ignore_rules: IgnoreRules,
        poll_interval: float = 5.0,
        observer_factory: Optional[ObserverFactory] = None,
    ) -> None:
        root = Path(root)
        if not root.exists():
            raise FileNotFoundError(f"Watch root does not exist: {root}")
        if not root.is_dir():
            raise ValueError(f"Watch root is not a directory: {root}")
        if not callable(on_event):
            raise TypeError("on_event must be callable")

        self.root = root.resolve()
        self.ignore_rules = ignore_rules
        self.poll_interval = poll_interval
        self._on_event = on_event
        self._observer_factory = observer_factory or self._default_observer

        self._mode: Optional[WatchMode] = None
        self._observer = None
        self._generation = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._emit: Optional[Callable[[FsEvent], None]] = None
        self._consumer: Optional[asyncio.Task] = None
        self._transition: Optional[asyncio.Task] = None
        self._previous_excepthook = None

    def _default_observer(self, mode: WatchMode):
        if mode is WatchMode.POLLING:
            return PollingObserver(timeout=self.poll_interval)
        return Observer()

    @property
    def mode(self) -> Optional[WatchMode]:
        return self._mode

    @property
    def generation(self) -> int:
        return self._generation

    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self, mode: WatchMode = WatchMode.NATIVE) -> None:
        """
        Start the consumer and the first observer.

        Raises:
        -------
        RuntimeError: If already running
        """
        if self.is_running():
            raise RuntimeError("IndexWatcher is already running")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._emit = thread_safe_emitter(self._loop, self._queue)
        self._consumer = asyncio.create_task(self._consume())
        self._install_excepthook()
        await self.switch_mode(mode)

    async def switch_mode(self, mode: WatchMode) -> None:
        """
        Move to the given mode.

        No-op when already there with a live observer. While a transition is
        in flight, callers wait for it rather than starting another.
        """
        if self._transition is not None and not self._transition.done():
            await asyncio.shield(self._transition)
            return
        if mode is self._mode and self._observer is not None:
            return
        if not self.is_running():
            raise RuntimeError("IndexWatcher is not running")

        self._transition = asyncio.ensure_future(self._do_switch(mode))
        await asyncio.shield(self._transition)

    async def _do_switch(self, mode: WatchMode) -> None:
        previous = self._mode
        old_observer = self._observer
        self._generation += 1
        generation = self._generation
        self._observer = None
        self._mode = mode

        if old_observer is not None:
            await asyncio.to_thread(self._stop_observer, old_observer)

        observer = self._observer_factory(mode)
        handler = IndexEventHandler(self._emit, generation)
        try:
            observer.schedule(handler, str(self.root), recursive=True)
            observer.start()
        except OSError as e:
            logger.warning(f"Could not start {mode.value} watcher for {self.root}: {e}")
            await asyncio.to_thread(self._stop_observer, observer)
            # Handled by the consumer like any other watcher error
            self._emit(FsEvent(kind=FsEventKind.ERROR, generation=generation, error=e))
            return

        self._observer = observer
        if previous is None:
            logger.info(f"Watching {self.root} ({mode.value})")
        else:
            logger.info(f"Watcher switched {previous.value} -> {mode.value} for {self.root}")

    @staticmethod
    def _stop_observer(observer) -> None:
        try:
            observer.stop()
            if observer.is_alive():
                observer.join(timeout=OBSERVER_JOIN_TIMEOUT)
        except RuntimeError:
            # stop() on an observer whose start() failed
            pass

    async def stop(self) -> None:
        """Stop observing and drain nothing further. Safe to call twice."""
        if self._transition is not None and not self._transition.done():
            await asyncio.shield(self._transition)

        self._generation += 1
        observer, self._observer = self._observer, None
        if observer is not None:
            await asyncio.to_thread(self._stop_observer, observer)

        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass

        self._restore_excepthook()
        if self._mode is not None:
            logger.info(f"Watcher stopped for {self.root}")
        self._mode = None

    def report_error(self, error: BaseException, path: Optional[str] = None) -> None:
        """Queue an error as if the current observer had raised it."""
        if self._emit is None:
            raise RuntimeError("IndexWatcher is not running")
        self._emit(
            FsEvent(kind=FsEventKind.ERROR, path=path, generation=self._generation, error=error)
        )

    async def wait_idle(self) -> None:
        """Wait until every queued event has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._process(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Error handling {event.kind.value} for {event.path}: {e}", exc_info=True
                )
            finally:
                self._queue.task_done()

    async def _process(self, event: FsEvent) -> None:
        if event.generation != self._generation:
            logger.debug(f"Dropping {event.kind.value} from replaced watcher: {event.path}")
            return

        if event.kind is FsEventKind.ERROR:
            await self._handle_error(event)
            return

        if event.path and self.ignore_rules.is_ignored(
            event.path, is_dir=event.kind.is_directory
        ):
            return

        await self._on_event(event)

    async def _handle_error(self, event: FsEvent) -> None:
        error = event.error
        if is_limit_error(error):
            if self._mode is WatchMode.NATIVE:
                logger.warning(
                    f"Watch limit reached ({error}); switching to polling every "
                    f"{self.poll_interval}s"
                )
                await self.switch_mode(WatchMode.POLLING)
            else:
                logger.warning(f"Watch limit reached while polling: {error}")
            return

        if event.path and isinstance(error, BaseException) and is_unsupported_error(error):
            self.ignore_rules.mark_unsupported(event.path)
            return

        logger.error(f"Watcher error: {error}")

    # watchdog emitter threads die on OSError (e.g. inotify limits hit while
    # adding watches for a new subdirectory). The hook turns those deaths
    # into ERROR events.

    def _install_excepthook(self) -> None:
        self._previous_excepthook = threading.excepthook
        threading.excepthook = self._thread_excepthook

    def _restore_excepthook(self) -> None:
        if self._previous_excepthook is not None:
            if threading.excepthook == self._thread_excepthook:
                threading.excepthook = self._previous_excepthook
            self._previous_excepthook = None

    def _owns_thread(self, thread: Optional[threading.Thread]) -> bool:
        observer = self._observer
        if observer is None or thread is None:
            return False
        if thread is observer:
            return True
        emitters = getattr(observer, "emitters", ())
        return thread in emitters

    def _thread_excepthook(self, args) -> None:
        if isinstance(args.exc_value, OSError) and self._owns_thread(args.thread):
            self.report_error(args.exc_value)
            return
        previous = self._previous_excepthook or threading.__excepthook__
        previous(args)
