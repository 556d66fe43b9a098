import os

import pytest

from medioxide.file_manager import FileManager
from medioxide.httpserver import (
    FileHandler,
    IndexedFileHandler,
    Request,
    RequestParseError,
    parse_request,
)


def split_response(response):
    head, _, body = response.partition(b"\r\n\r\n")
    return head.decode().split("\r\n"), body


def test_parse_request_line():
    request = parse_request(b"GET /test.txt HTTP/1.1\r\nHost: x\r\n\r\n")
    assert request == Request("GET", "test.txt", "HTTP/1.1")


def test_parse_strips_only_one_slash_and_decodes():
    assert parse_request(b"GET //a.txt HTTP/1.1\r\n").locator == "/a.txt"
    assert parse_request(b"GET /my%20file.txt HTTP/1.1\n").locator == "my file.txt"


def test_parse_without_version():
    assert parse_request(b"get /a.txt\r\n") == Request("GET", "a.txt", None)


@pytest.mark.parametrize("raw", [
    b"",
    b"\r\n",
    b"GET /test.txt HTTP/1.1",
    b"GET\r\n",
    b"GET test.txt HTTP/1.1\r\n",
    b"GET /\xff\xfe HTTP/1.1\r\n",
    b"GET /a%00b HTTP/1.1\r\n",
])
def test_parse_rejects_malformed(raw):
    with pytest.raises(RequestParseError):
        parse_request(raw)


def test_serves_file(served_folder):
    status, body = split_response(FileHandler(served_folder).process(b"GET /test.txt HTTP/1.1\r\n\r\n"))
    assert status == ["HTTP/1.1 200 OK", "Content-type: text/plain"]
    assert body == b"hello"


def test_unknown_extension_is_octet_stream(served_folder):
    (served_folder / "blob.xyz").write_bytes(b"\x00\x01")
    status, body = split_response(FileHandler(served_folder).process(b"GET /blob.xyz HTTP/1.1\r\n"))
    assert status[1] == "Content-type: application/octet-stream"
    assert body == b"\x00\x01"


def test_missing_file_is_404(served_folder):
    status, _ = split_response(FileHandler(served_folder).process(b"GET /missing.txt HTTP/1.1\r\n"))
    assert status[0] == "HTTP/1.1 404 Not Found"


def test_directory_is_404(served_folder):
    (served_folder / "sub").mkdir()
    handler = FileHandler(served_folder)
    assert handler.process(b"GET /sub HTTP/1.1\r\n").startswith(b"HTTP/1.1 404")
    assert handler.process(b"GET / HTTP/1.1\r\n").startswith(b"HTTP/1.1 404")


def test_bad_request_is_400(served_folder):
    assert FileHandler(served_folder).process(b"\r\n").startswith(b"HTTP/1.1 400 Bad Request")


def test_other_methods_are_405(served_folder):
    assert FileHandler(served_folder).process(b"POST /test.txt HTTP/1.1\r\n").startswith(b"HTTP/1.1 405")


@pytest.mark.parametrize("locator", [b"../secret.txt", b"sub/../../secret.txt", b"%2e%2e/secret.txt"])
def test_path_traversal_is_refused(tmp_path, locator):
    served = tmp_path / "served"
    served.mkdir()
    (tmp_path / "secret.txt").write_bytes(b"secret")
    response = FileHandler(served).process(b"GET /" + locator + b" HTTP/1.1\r\n")
    assert response.startswith(b"HTTP/1.1 403 Forbidden")
    assert b"secret" not in response.partition(b"\r\n\r\n")[2]


def test_symlink_out_of_root_is_refused(tmp_path):
    served = tmp_path / "served"
    served.mkdir()
    (tmp_path / "secret.txt").write_bytes(b"secret")
    os.symlink(tmp_path / "secret.txt", served / "link.txt")
    assert FileHandler(served).process(b"GET /link.txt HTTP/1.1\r\n").startswith(b"HTTP/1.1 403")


def test_hidden_names_are_not_served(served_folder):
    handler = FileHandler(served_folder, hidden=["test.txt"])
    assert handler.process(b"GET /test.txt HTTP/1.1\r\n").startswith(b"HTTP/1.1 404")


def test_indexed_handler_serves_by_id(file_manager):
    file_manager.add_file("X", "a.json", b"{}")
    status, body = split_response(IndexedFileHandler(file_manager).process(b"GET /X HTTP/1.1\r\n"))
    assert status == ["HTTP/1.1 200 OK", "Content-type: application/json"]
    assert body == b"{}"


def test_indexed_handler_unknown_id_is_404(file_manager):
    handler = IndexedFileHandler(file_manager)
    assert handler.process(b"GET /missing HTTP/1.1\r\n").startswith(b"HTTP/1.1 404")


def test_indexed_handler_desync_is_500(file_manager):
    path = file_manager.add_file("X", "a.txt", b"content")
    os.remove(path)
    response = IndexedFileHandler(file_manager).process(b"GET /X HTTP/1.1\r\n")
    assert response.startswith(b"HTTP/1.1 500 Internal Server Error")


def test_file_vanishing_before_open_is_404(served_folder, monkeypatch):
    def vanished(path, mode='r'):
        raise FileNotFoundError(path)

    monkeypatch.setattr("medioxide.httpserver.open", vanished, raising=False)
    response = FileHandler(served_folder).process(b"GET /test.txt HTTP/1.1\r\n")
    assert response.startswith(b"HTTP/1.1 404 Not Found")


def test_indexed_handler_refuses_entry_outside_folder(tmp_path, managed_folder):
    (tmp_path / "secret.txt").write_bytes(b"secret")
    os.symlink(tmp_path / "secret.txt", managed_folder / "link.txt")
    (managed_folder / "index.txt").write_text("s link.txt\n")

    response = IndexedFileHandler(FileManager(managed_folder)).process(b"GET /s HTTP/1.1\r\n")
    assert response.startswith(b"HTTP/1.1 500")
    assert b"secret" not in response
