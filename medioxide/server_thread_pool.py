import socket
import logging
import threading
import concurrent.futures
from http import HTTPStatus

BUFFER_SIZE = 4096
ACCEPT_POLL_INTERVAL = 1.0
DEFAULT_TIMEOUT = 60


class Server:
    """Accepts connections and answers each one with ``handler.process``.

    Every connection gets its own daemon thread unless ``pool_size`` is set,
    in which case connections queue for a bounded thread pool instead.
    """

    def __init__(self, handler, host='127.0.0.1', port=8080, pool_size=None,
                 timeout=DEFAULT_TIMEOUT, backlog=5):
        self.handler = handler
        self.pool_size = pool_size
        self.timeout = timeout
        self.backlog = backlog
        self._shutdown = threading.Event()
        self._executor = None
        self.socket = self.create_socket(host, port)

    def create_socket(self, host, port):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        try:
            sock.bind((host, port))
            sock.listen(self.backlog)
        except OSError:
            sock.close()
            raise
        return sock

    @property
    def address(self):
        return self.socket.getsockname()[:2]

    def handle_client(self, conn, addr):
        logging.debug(f"Handling connection from {addr}")
        try:
            conn.settimeout(self.timeout)
            try:
                raw = conn.recv(BUFFER_SIZE)
            except socket.timeout:
                logging.warning(f"Connection from {addr} timed out before sending a request")
                self._send_error(conn, addr, HTTPStatus.REQUEST_TIMEOUT)
                return
            response = self.handler.process(raw)
            conn.sendall(response)
        except socket.timeout:
            logging.warning(f"Connection from {addr} timed out while sending")
        except Exception as e:
            logging.error(f"Connection error from {addr}: {e!r}")
            self._send_error(conn, addr)
        finally:
            conn.close()
            logging.debug(f"Closed connection from {addr}")

    def _send_error(self, conn, addr, status=HTTPStatus.INTERNAL_SERVER_ERROR):
        try:
            conn.sendall(self.handler.error_response(status))
        except OSError as e:
            logging.debug(f"Could not send error response to {addr}: {e}")

    def dispatch(self, conn, addr):
        if self._executor is not None:
            self._executor.submit(self.handle_client, conn, addr)
        else:
            threading.Thread(target=self.handle_client, args=(conn, addr), daemon=True).start()

    def serve_forever(self):
        host, port = self.address
        if self.pool_size:
            logging.warning(f"Server started on {host}:{port} with {self.pool_size} pool size")
            self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.pool_size)
        else:
            logging.warning(f"Server started on {host}:{port}, one thread per connection")

        try:
            while not self._shutdown.is_set():
                try:
                    conn, addr = self.socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._shutdown.is_set() or self.socket.fileno() == -1:
                        break
                    logging.error(f"Accept failed: {e}")
                    continue
                self.dispatch(conn, addr)
        finally:
            self.socket.close()
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None
            logging.warning("Server stopped")

    def shutdown(self):
        self._shutdown.set()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.shutdown()
        self.socket.close()
