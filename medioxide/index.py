import os
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass

from medioxide.errors import (
    CorruptedIndexEntry,
    CouldNotLoadIndexIntoMemory,
    CouldNotLockIndex,
)

INDEX_FILE_NAME = 'index.txt'


@dataclass(frozen=True)
class IndexEntry:
    id: str
    relative_path: str

    @classmethod
    def from_line(cls, line, line_number=0):
        tokens = line.rstrip('\r\n').split(' ')
        if len(tokens) != 2 or not all(tokens):
            raise CorruptedIndexEntry(line_number, line)
        return cls(tokens[0], tokens[1])

    def to_line(self):
        return f"{self.id} {self.relative_path}\n"


def index_path(folder):
    return os.path.join(folder, INDEX_FILE_NAME)


def clean_relative_path(path):
    """Normalized ``path`` if it names a file inside the managed folder, else None."""
    if not path or '\x00' in path or any(c.isspace() for c in path) or os.path.isabs(path):
        return None
    relative_path = os.path.normpath(path)
    if relative_path in ('.', INDEX_FILE_NAME) or relative_path.split(os.sep)[0] == '..':
        return None
    return relative_path


def load_index(folder):
    """Read ``index.txt`` under ``folder`` into an ``id -> relative path`` dict.

    A missing index file is created empty. A single malformed or duplicated
    line fails the whole load; there is no partial recovery.
    """
    path = index_path(folder)
    entries = {}
    try:
        with open(path, 'r', encoding='utf-8', newline='') as f:
            for line_number, line in enumerate(f, start=1):
                entry = IndexEntry.from_line(line, line_number)
                relative_path = clean_relative_path(entry.relative_path)
                if relative_path is None or entry.id in entries:
                    raise CorruptedIndexEntry(line_number, line)
                entries[entry.id] = relative_path
    except FileNotFoundError:
        try:
            open(path, 'x', encoding='utf-8').close()
        except OSError as err:
            raise CouldNotLoadIndexIntoMemory(f"Could not create {path}: {err}") from err
        logging.info(f"Created empty index at {path}")
        return entries
    except (OSError, UnicodeDecodeError) as err:
        raise CouldNotLoadIndexIntoMemory(f"Could not load {path}: {err}") from err

    logging.info(f"Loaded {len(entries)} entries from {path}")
    return entries


def append_entry(folder, entry):
    with open(index_path(folder), 'a+b') as f:
        # a hand-edited index may lack its final newline
        if f.seek(0, os.SEEK_END):
            f.seek(-1, os.SEEK_END)
            if f.read(1) != b'\n':
                f.write(b'\n')
        f.write(entry.to_line().encode('utf-8'))
        f.flush()
        os.fsync(f.fileno())


class ReadWriteLock:
    """Many readers or one writer. A waiting writer blocks new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self, timeout=None):
        with self._cond:
            acquired = self._cond.wait_for(
                lambda: not self._writer and not self._writers_waiting, timeout)
            if acquired:
                self._readers += 1
            return acquired

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def acquire_write(self, timeout=None):
        with self._cond:
            self._writers_waiting += 1
            try:
                acquired = self._cond.wait_for(
                    lambda: not self._writer and not self._readers, timeout)
            finally:
                self._writers_waiting -= 1
            if acquired:
                self._writer = True
            else:
                # readers may have been held back by this writer
                self._cond.notify_all()
            return acquired

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class FileIndex:
    """In-memory ``id -> relative path`` mapping behind a ``ReadWriteLock``.

    Use ``read()`` / ``write()`` as context managers; both yield the
    underlying dict and raise ``CouldNotLockIndex`` when the lock cannot be
    taken within ``lock_timeout`` seconds.
    """

    def __init__(self, entries=None, lock_timeout=None):
        self._entries = dict(entries or {})
        self._lock = ReadWriteLock()
        self.lock_timeout = lock_timeout

    @classmethod
    def load(cls, folder, lock_timeout=None):
        return cls(load_index(folder), lock_timeout)

    @contextmanager
    def read(self):
        if not self._lock.acquire_read(self.lock_timeout):
            raise CouldNotLockIndex('read')
        try:
            yield self._entries
        finally:
            self._lock.release_read()

    @contextmanager
    def write(self):
        if not self._lock.acquire_write(self.lock_timeout):
            raise CouldNotLockIndex('write')
        try:
            yield self._entries
        finally:
            self._lock.release_write()
