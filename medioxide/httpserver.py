import os
import logging
import urllib.parse
from dataclasses import dataclass
from http import HTTPStatus
from typing import Optional

from medioxide.errors import FileManagerError

FILE_TYPES = {
    '.pdf': 'application/pdf',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.mp3': 'audio/mpeg',
    '.mp4': 'video/mp4',
    '.txt': 'text/plain',
    '.html': 'text/html',
    '.json': 'application/json'
}
DEFAULT_FILE_TYPE = 'application/octet-stream'


class RequestParseError(ValueError):
    pass


@dataclass(frozen=True)
class Request:
    method: str
    locator: str
    version: Optional[str] = None


def parse_request(raw):
    """Parse the request line at the start of ``raw``.

    Only the first line is looked at: ``<METHOD> /<resource> [<VERSION>]``.
    The resource locator is the path with one leading ``/`` removed and
    percent-escapes decoded. Anything malformed raises ``RequestParseError``.
    """
    if not raw:
        raise RequestParseError("empty request")
    try:
        text = raw.decode('utf-8')
    except UnicodeDecodeError as err:
        raise RequestParseError(f"request is not valid UTF-8 at index {err.start}") from err
    if '\n' not in text:
        raise RequestParseError("request line is not terminated")

    first_line = text.split('\n', 1)[0].rstrip('\r')
    tokens = [token for token in first_line.split(' ') if token]
    if len(tokens) < 2:
        raise RequestParseError(f"malformed request line {first_line!r}")

    method, path = tokens[0], tokens[1]
    if not path.startswith('/'):
        raise RequestParseError(f"path {path!r} does not start with '/'")
    locator = urllib.parse.unquote(path[1:])
    if '\x00' in locator:
        raise RequestParseError("null byte in path")
    version = tokens[2] if len(tokens) > 2 else None
    return Request(method.upper(), locator, version)


class PathTraversalError(Exception):
    pass


class FileHandler:
    """Turns one raw request into response bytes, serving from ``storage_dir``."""

    def __init__(self, storage_dir='./files', hidden=()):
        self.storage = os.path.realpath(storage_dir)
        self.hidden = {os.path.join(self.storage, name) for name in hidden}

    def process(self, raw_data):
        try:
            request = parse_request(raw_data)
        except RequestParseError as e:
            logging.warning(f"Bad request: {e}")
            return self._fail(HTTPStatus.BAD_REQUEST, "Bad request")

        logging.info(f"{request.method} /{request.locator}")
        if request.method != 'GET':
            return self._fail(HTTPStatus.METHOD_NOT_ALLOWED, "Not allowed")
        return self._send_file(request.locator)

    def _send_file(self, locator):
        try:
            f = self._open(locator)
        except PathTraversalError:
            logging.warning(f"Refused path outside served root: {locator!r}")
            return self._fail(HTTPStatus.FORBIDDEN, "Forbidden")
        except FileManagerError as e:
            logging.error(f"Index error for {locator!r}: {e}")
            return self._fail(HTTPStatus.INTERNAL_SERVER_ERROR, "Server broke")
        except FileNotFoundError:
            return self._fail(HTTPStatus.NOT_FOUND, "Not found")
        except OSError as e:
            logging.error(f"Open failed for {locator!r}: {e}")
            return self._fail(HTTPStatus.INTERNAL_SERVER_ERROR, "Server broke")

        if f is None:
            return self._fail(HTTPStatus.NOT_FOUND, "Not found")

        try:
            with f:
                data = f.read()
        except OSError as e:
            logging.error(f"Send failed for {locator!r}: {e}")
            return self._fail(HTTPStatus.INTERNAL_SERVER_ERROR, "Server broke")

        logging.debug(f"Sent {f.name} ({len(data)} bytes)")
        return self._ok(data, self.content_type(f.name))

    def _open(self, locator):
        full_path = self._clean_path(locator)
        if full_path in self.hidden or not os.path.isfile(full_path):
            return None
        return open(full_path, 'rb')

    def _clean_path(self, locator):
        full_path = os.path.realpath(os.path.join(self.storage, locator))
        if os.path.commonpath([self.storage, full_path]) != self.storage:
            raise PathTraversalError(locator)
        return full_path

    @staticmethod
    def content_type(path):
        ext = os.path.splitext(path)[1].lower()
        return FILE_TYPES.get(ext, DEFAULT_FILE_TYPE)

    def error_response(self, status=HTTPStatus.INTERNAL_SERVER_ERROR):
        return self._fail(status, status.phrase)

    def _ok(self, data, content_type):
        return self._build(HTTPStatus.OK, data, content_type)

    def _fail(self, status, msg):
        return self._build(status, str(msg).encode('utf-8'), 'text/plain')

    def _build(self, status, data, content_type):
        head = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-type: {content_type}\r\n"
            "\r\n"
        )
        return head.encode('utf-8') + data


class IndexedFileHandler(FileHandler):
    """Serves files by id through a shared ``FileManager``."""

    def __init__(self, file_manager):
        super().__init__(file_manager.folder)
        self.file_manager = file_manager

    def _open(self, locator):
        return self.file_manager.get_file_by_id(locator)
