import os
import argparse
import urllib.parse

import requests

SERVER_ADDRESS = "http://127.0.0.1:8080"


def file_url(server_address, locator):
    return f"{server_address.rstrip('/')}/{urllib.parse.quote(locator)}"


def fetch_file(server_address, locator, destination=None, timeout=30):
    resp = requests.get(file_url(server_address, locator), timeout=timeout)
    resp.raise_for_status()

    if destination is not None:
        with open(destination, 'wb') as f:
            f.write(resp.content)
    return resp.content


def download(server_address, locator, output_dir='downloads'):
    os.makedirs(output_dir, exist_ok=True)
    destination = os.path.join(output_dir, os.path.basename(locator) or 'download')

    try:
        print(f":: Fetching {locator}...")
        data = fetch_file(server_address, locator, destination)
        print(f"++ Saved {len(data)} bytes to {destination}")
        return True
    except requests.exceptions.HTTPError as err:
        print(f"!! Server replied with {err.response.status_code}: {err.response.text.strip()}")
    except requests.exceptions.RequestException as err:
        print(f"!! Failed to fetch {locator}: {err}")
    return False


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Download files from a medioxide server')
    parser.add_argument('locators', nargs='+', help='file path or id to download')
    parser.add_argument('--server', default=SERVER_ADDRESS)
    parser.add_argument('--output-dir', default='downloads')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    results = [download(args.server, locator, args.output_dir) for locator in args.locators]
    return 0 if all(results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
