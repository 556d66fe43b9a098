import os
import csv
import time
import socket
import logging
import argparse
import threading
import statistics
import concurrent.futures

import psutil

DEFAULT_SERVER_ADDRESS = ('127.0.0.1', 8080)
RECV_CHUNK_SIZE = 64 * 1024
MEMORY_THRESHOLD = 0.9


def configure_logging(debug=False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler("stress_test.log"),
            logging.StreamHandler()
        ]
    )


def check_memory_usage(threshold=MEMORY_THRESHOLD):
    memory = psutil.virtual_memory()
    if memory.percent / 100 > threshold:
        logging.warning(f"High memory usage: {memory.percent}%")
        return True
    return False


def parse_response(raw):
    head, sep, body = raw.partition(b"\r\n\r\n")
    if not sep:
        raise ValueError("response has no header terminator")
    status_line = head.split(b"\r\n", 1)[0].decode('utf-8')
    parts = status_line.split(' ', 2)
    if len(parts) < 2 or not parts[1].isdigit():
        raise ValueError(f"malformed status line {status_line!r}")
    return int(parts[1]), body


class FileServerClient:
    def __init__(self, server_address=DEFAULT_SERVER_ADDRESS, timeout=60):
        self.server_address = server_address
        self.timeout = timeout
        self._counter_lock = threading.Lock()
        self.reset_counters()

    def reset_counters(self):
        self.success_count = 0
        self.fail_count = 0

    def send_request(self, locator):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)

        try:
            sock.connect(self.server_address)
            sock.sendall(f"GET /{locator} HTTP/1.1\r\n\r\n".encode('utf-8'))

            chunks = []
            while True:
                data = sock.recv(RECV_CHUNK_SIZE)
                if not data:
                    break
                chunks.append(data)
            return parse_response(b"".join(chunks))
        finally:
            sock.close()

    def perform_download(self, locator, worker_id):
        start_time = time.time()

        try:
            status, body = self.send_request(locator)
            duration = time.time() - start_time
            if status != 200:
                self._count(False)
                logging.error(f"Worker {worker_id}: GET {locator} failed with {status}")
                return self._create_result(worker_id, 0, duration, 'ERROR', error=str(status))

            self._count(True)
            logging.info(f"Worker {worker_id}: GET {locator} successful in {duration:.2f}s")
            return self._create_result(worker_id, len(body), duration, 'OK')
        except (OSError, ValueError) as e:
            self._count(False)
            logging.error(f"Worker {worker_id}: GET {locator} exception! {e}")
            return self._create_result(worker_id, 0, time.time() - start_time, 'ERROR', error=str(e))

    def _count(self, ok):
        with self._counter_lock:
            if ok:
                self.success_count += 1
            else:
                self.fail_count += 1

    def _create_result(self, worker_id, file_size, duration, status, error=None):
        result = {
            'worker_id': worker_id,
            'file_size': file_size,
            'duration': duration,
            'throughput': file_size / duration if duration > 0 else 0,
            'status': status
        }
        if error is not None:
            result['error'] = error
        return result

    def run_stress_test(self, locator, client_pool_size):
        self.reset_counters()
        logging.info(f"GET {locator} with {client_pool_size} clients starting...")

        all_results = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=client_pool_size) as executor:
            futures = [executor.submit(self.perform_download, locator, i) for i in range(client_pool_size)]
            for future in concurrent.futures.as_completed(futures):
                all_results.append(future.result())
                if check_memory_usage():
                    time.sleep(1)

        return self._calculate_statistics(locator, client_pool_size, all_results)

    def _calculate_statistics(self, locator, client_pool_size, results):
        stats = {
            'locator': locator,
            'client_pool_size': client_pool_size,
            'success_count': self.success_count,
            'fail_count': self.fail_count
        }
        durations = [r['duration'] for r in results if r['status'] == 'OK']
        if not durations:
            return stats

        throughputs = [r['throughput'] for r in results if r['throughput'] > 0]
        stats.update({
            'avg_duration': statistics.mean(durations),
            'median_duration': statistics.median(durations),
            'min_duration': min(durations),
            'max_duration': max(durations),
            'avg_throughput': statistics.mean(throughputs) if throughputs else 0,
            'max_throughput': max(throughputs) if throughputs else 0,
        })

        logging.info(f"GET {locator} complete: {stats['success_count']} succeeded, {stats['fail_count']} failed")
        return stats

    def save_results_to_csv(self, all_stats, directory='.'):
        timestamp = time.strftime("%Y%m%d-%H%M%S")
        csv_filename = os.path.join(directory, f"stress_test_results_{timestamp}.csv")

        with open(csv_filename, 'w', newline='') as csvfile:
            fieldnames = [
                'locator', 'client_pool_size', 'avg_duration', 'median_duration',
                'min_duration', 'max_duration', 'avg_throughput', 'max_throughput',
                'success_count', 'fail_count'
            ]
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames, restval=0)
            writer.writeheader()
            writer.writerows(all_stats)

        logging.info(f"Results saved to {csv_filename}")
        return csv_filename


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description='File Server Stress Test Client')
    parser.add_argument('locators', nargs='+')
    parser.add_argument('--host', default=DEFAULT_SERVER_ADDRESS[0])
    parser.add_argument('--port', type=int, default=DEFAULT_SERVER_ADDRESS[1])
    parser.add_argument('--client-pools', type=int, nargs='+', default=[1, 5, 50])
    parser.add_argument('--debug', action='store_true')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_arguments(argv)
    configure_logging(args.debug)
    client = FileServerClient((args.host, args.port))

    all_stats = []
    for locator in args.locators:
        for client_pool_size in args.client_pools:
            all_stats.append(client.run_stress_test(locator, client_pool_size))
    client.save_results_to_csv(all_stats)


if __name__ == "__main__":
    main()
