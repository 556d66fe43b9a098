import os
import logging

from medioxide.errors import (
    CouldNotCreateDirectory,
    CouldNotCreateNewFile,
    CouldNotReadFromDirectory,
    DirectoryDoesNotExist,
    FileAlreadyExists,
    IdAlreadyExists,
    IndexedFileDoesNotExist,
    InvalidIndexEntry,
)
from medioxide.index import FileIndex, IndexEntry, append_entry, clean_relative_path


class FileManager:
    """Owns a managed folder and the id index of the files stored in it.

    One instance is shared by every connection handler. Reads take the
    index's shared lock, mutations take its exclusive lock, and file bytes
    are always on disk before their id becomes visible.
    """

    def __init__(self, folder, create=False, lock_timeout=None):
        folder = os.path.abspath(os.fspath(folder))
        if not os.path.isdir(folder):
            if not create:
                raise DirectoryDoesNotExist(folder)
            try:
                os.makedirs(folder)
            except OSError as err:
                raise CouldNotCreateDirectory(f"Directory could not be created because {err}") from err
            logging.info(f"Created managed folder {folder}")

        self.folder = folder
        self.index = FileIndex.load(folder, lock_timeout)
        self._pending_ids = set()
        self._pending_paths = set()

    def add_file(self, file_id, file_name, data):
        content = self._read_all(data)
        relative_path = self._validate(file_id, file_name)
        file_path = os.path.join(self.folder, relative_path)

        with self.index.write() as entries:
            if (relative_path in self._pending_paths
                    or relative_path in entries.values()
                    or os.path.lexists(file_path)):
                raise FileAlreadyExists(file_name)
            if file_id in entries or file_id in self._pending_ids:
                raise IdAlreadyExists(file_id)
            self._pending_ids.add(file_id)
            self._pending_paths.add(relative_path)

        # the disk write happens outside the lock; the reservation keeps
        # other writers off this id and path meanwhile
        try:
            self._write_new_file(file_path, file_name, content)
        except BaseException:
            with self.index.write():
                self._release(file_id, relative_path)
            raise

        with self.index.write() as entries:
            try:
                append_entry(self.folder, IndexEntry(file_id, relative_path))
            except OSError as err:
                _remove_quietly(file_path)
                raise CouldNotCreateNewFile(f"Could not persist index entry for {file_id}: {err}") from err
            else:
                entries[file_id] = relative_path
            finally:
                self._release(file_id, relative_path)

        logging.info(f"Stored {file_id} at {file_path} ({len(content)} bytes)")
        return file_path

    def get_file_by_id(self, file_id):
        with self.index.read() as entries:
            relative_path = entries.get(file_id)
            if relative_path is None:
                return None
            return self._open(relative_path)

    def get_file_by_path(self, path):
        relative_path = self._relative(path)
        with self.index.read() as entries:
            if relative_path not in entries.values():
                return None
            return self._open(relative_path)

    def get_path_by_id(self, file_id):
        with self.index.read() as entries:
            relative_path = entries.get(file_id)
        if relative_path is None:
            return None
        return os.path.join(self.folder, relative_path)

    def get_id_from_path(self, path):
        relative_path = self._relative(path)
        with self.index.read() as entries:
            for file_id, entry_path in entries.items():
                if entry_path == relative_path:
                    return file_id
        return None

    def file_exists_with_id(self, file_id):
        with self.index.read() as entries:
            return file_id in entries

    def file_exists_at_path(self, path):
        relative_path = self._relative(path)
        with self.index.read() as entries:
            return any(entry_path == relative_path for entry_path in entries.values())

    def _open(self, relative_path):
        file_path = os.path.join(self.folder, relative_path)
        real_folder = os.path.realpath(self.folder)
        if os.path.commonpath([real_folder, os.path.realpath(file_path)]) != real_folder:
            raise InvalidIndexEntry(f"Indexed file {file_path} resolves outside {self.folder}")
        if not os.path.isfile(file_path):
            raise IndexedFileDoesNotExist(file_path)
        try:
            return open(file_path, 'rb')
        except FileNotFoundError as err:
            raise IndexedFileDoesNotExist(file_path) from err
        except OSError as err:
            raise CouldNotReadFromDirectory(f"Directory could not be read from because {err}") from err

    def _relative(self, path):
        path = os.fspath(path)
        if os.path.isabs(path):
            path = os.path.relpath(path, self.folder)
        return os.path.normpath(path)

    def _validate(self, file_id, file_name):
        if not file_id or '\x00' in file_id or any(c.isspace() for c in file_id):
            raise InvalidIndexEntry(f"Invalid id {file_id!r}")
        relative_path = clean_relative_path(file_name)
        if relative_path is None:
            raise InvalidIndexEntry(f"Invalid file name {file_name!r}")
        return relative_path

    def _release(self, file_id, relative_path):
        self._pending_ids.discard(file_id)
        self._pending_paths.discard(relative_path)

    @staticmethod
    def _read_all(data):
        if isinstance(data, (bytes, bytearray, memoryview)):
            return bytes(data)
        try:
            return data.read()
        except OSError as err:
            raise CouldNotCreateNewFile(f"Could not read new file data because {err}") from err

    @staticmethod
    def _write_new_file(file_path, file_name, content):
        try:
            f = open(file_path, 'xb')
        except FileExistsError as err:
            raise FileAlreadyExists(file_name) from err
        except OSError as err:
            raise CouldNotCreateNewFile(f"Could not create new file because {err}") from err

        try:
            with f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
        except OSError as err:
            _remove_quietly(file_path)
            raise CouldNotCreateNewFile(f"Could not write new file because {err}") from err


def _remove_quietly(path):
    try:
        os.remove(path)
    except OSError as err:
        logging.warning(f"Could not remove orphaned file {path}: {err}")
