import os
import sys
import logging
import argparse

from medioxide.errors import FileManagerError
from medioxide.file_manager import FileManager
from medioxide.httpserver import FileHandler, IndexedFileHandler
from medioxide.index import INDEX_FILE_NAME
from medioxide.server_thread_pool import DEFAULT_TIMEOUT, Server

DEFAULT_FOLDER = './files'
DEFAULT_ADDRESS = '127.0.0.1:8080'


def setup_logging(debug=False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )


def parse_address(address):
    host, sep, port = address.rpartition(':')
    if not sep or not host or not port.isdigit() or int(port) > 65535:
        raise argparse.ArgumentTypeError(f"invalid listen address {address!r}, expected host:port")
    return host, int(port)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='medioxide', description='Indexed media file server')
    parser.add_argument('--debug', action='store_true')
    commands = parser.add_subparsers(dest='command', required=True)

    serve = commands.add_parser('serve', help='serve files over TCP')
    serve.add_argument('--folder', default=DEFAULT_FOLDER, help='served folder')
    serve.add_argument('--address', type=parse_address, default=DEFAULT_ADDRESS,
                       help='listen address as host:port')
    serve.add_argument('--create', action='store_true', help='create the folder if it is missing')
    serve.add_argument('--by-id', action='store_true', help='resolve requests through the file index')
    serve.add_argument('--pool-size', type=int, default=None,
                       help='bounded worker pool size (default: one thread per connection)')
    serve.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                       help='per-connection read/write timeout in seconds')

    add = commands.add_parser('add', help='store a file in the managed folder')
    add.add_argument('file', type=argparse.FileType('rb'))
    add.add_argument('--id', required=True, dest='file_id')
    add.add_argument('--name', default=None, help='stored file name (default: the file basename)')
    add.add_argument('--folder', default=DEFAULT_FOLDER)
    add.add_argument('--create', action='store_true')

    return parser.parse_args(argv)


def build_server(args):
    file_manager = FileManager(args.folder, create=args.create)
    if args.by_id:
        handler = IndexedFileHandler(file_manager)
    else:
        handler = FileHandler(file_manager.folder, hidden=[INDEX_FILE_NAME])
    host, port = args.address
    return Server(handler, host, port, pool_size=args.pool_size, timeout=args.timeout)


def add_file(args):
    with args.file:
        file_manager = FileManager(args.folder, create=args.create)
        name = args.name or os.path.basename(args.file.name)
        path = file_manager.add_file(args.file_id, name, args.file)
    print(f"++ Stored {args.file_id} at {path}")


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.debug)

    try:
        if args.command == 'add':
            add_file(args)
            return 0
        server = build_server(args)
    except (FileManagerError, OSError) as e:
        logging.error(f"Startup failed: {e}")
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logging.warning("Server shutdown initiated")
    return 0


if __name__ == "__main__":
    sys.exit(main())
