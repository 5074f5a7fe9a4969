#!/usr/bin/env python3
"""
Central data reset
Wipes sales, inventory and settings on the central service, keeping users.
Requires the maintenance secret and a typed confirmation.
"""

import argparse
import getpass
import os
import sys
from typing import Dict

import requests

CONFIRMATION_PHRASE = "RESET"

def reset_central(base_url: str, secret: str, timeout: float = 120) -> requests.Response:
    return requests.post(
        f"{base_url.rstrip('/')}/api/maintenance/reset",
        json={"secret": secret, "confirm": True},
        timeout=timeout
    )

def print_counts(before: Dict[str, int], after: Dict[str, int]):
    print(f"{'table':<22}{'before':>10}{'after':>10}")
    print("-" * 42)
    for table, count in before.items():
        print(f"{table:<22}{count:>10}{after.get(table, 0):>10}")

def main() -> int:
    parser = argparse.ArgumentParser(description="Reset all central data except users")
    parser.add_argument("base_url", nargs="?", default="http://localhost:8000", help="Central service URL")
    args = parser.parse_args()

    secret = os.environ.get("MAINTENANCE_SECRET") or getpass.getpass("Maintenance secret: ")

    print(f"⚠️ This deletes every sale, product, category, customer and setting on {args.base_url}")
    typed = input(f"Type {CONFIRMATION_PHRASE} to continue: ")
    if typed.strip() != CONFIRMATION_PHRASE:
        print("Aborted")
        return 1

    try:
        response = reset_central(args.base_url, secret)
    except requests.exceptions.RequestException as e:
        print(f"❌ Reset request failed: {e}")
        return 1

    body = response.json() if response.headers.get("content-type", "").startswith("application/json") else {}
    if response.status_code != 200:
        print(f"❌ Reset refused ({response.status_code}): {body.get('detail', response.text)}")
        return 1

    print(f"✅ {body['message']}")
    print_counts(body["before"], body["after"])
    return 0

if __name__ == "__main__":
    sys.exit(main())
