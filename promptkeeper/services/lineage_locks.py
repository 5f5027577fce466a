import threading
import weakref
from contextlib import ExitStack, contextmanager
from typing import Iterable, Tuple


class LineageLockRegistry:
    """
    One mutex per ``(project_id, name)`` lineage.

    Held across the read-latest / compute / insert / commit span so writers in
    this process cannot mint the same version. Writers in other processes are
    caught by the ``uq_prompt_lineage_version`` constraint instead.

    Entries are weak: a lineage's lock is dropped once no writer holds a
    reference to it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], threading.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, project_id: str, name: str) -> threading.Lock:
        key = (project_id, name)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, project_id: str, name: str):
        lock = self.lock_for(project_id, name)
        with lock:
            yield

    @contextmanager
    def hold_many(self, project_id: str, names: Iterable[str]):
        """Holds the locks of several lineages of one project, acquired in name order."""
        with ExitStack() as stack:
            for name in sorted(set(names)):
                stack.enter_context(self.hold(project_id, name))
            yield

    def __len__(self):
        with self._guard:
            return len(self._locks)
