import threading

import pytest

from medioxide.file_manager import FileManager
from medioxide.httpserver import FileHandler, IndexedFileHandler
from medioxide.server_thread_pool import Server


@pytest.fixture
def managed_folder(tmp_path):
    folder = tmp_path / "files"
    folder.mkdir()
    yield folder


@pytest.fixture
def file_manager(managed_folder):
    return FileManager(managed_folder)


@pytest.fixture
def served_folder(managed_folder):
    (managed_folder / "test.txt").write_bytes(b"hello")
    yield managed_folder


def _run(handler, **kwargs):
    server = Server(handler, '127.0.0.1', 0, **kwargs)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, thread


@pytest.fixture
def path_server(served_folder):
    server, thread = _run(FileHandler(served_folder), timeout=5)
    yield server
    server.shutdown()
    thread.join(timeout=5)


@pytest.fixture
def index_server(file_manager):
    file_manager.add_file("X", "a.txt", b"indexed content")
    server, thread = _run(IndexedFileHandler(file_manager), pool_size=4, timeout=5)
    yield server
    server.shutdown()
    thread.join(timeout=5)
