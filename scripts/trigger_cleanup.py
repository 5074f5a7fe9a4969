#!/usr/bin/env python3
"""
Placeholder cleanup trigger
Asks the central service to delete placeholder products that never received variants
"""

import argparse
import sys
from typing import Dict

import requests

def trigger_cleanup(base_url: str, timeout: float = 30) -> Dict:
    response = requests.post(f"{base_url.rstrip('/')}/api/sync/cleanup-placeholders", timeout=timeout)
    response.raise_for_status()
    return response.json()

def print_results(results: Dict):
    print("🧹 Placeholder Cleanup")
    print("=" * 50)
    print(f"Scanned: {results['scanned']}")
    print(f"Deleted: {len(results['deleted'])}")
    for item in results["deleted"]:
        print(f"   🗑️ {item['name']} ({item['id']})")

    print(f"Needs manual merge: {len(results['needs_merge'])}")
    for item in results["needs_merge"]:
        candidate = item.get("merge_candidate_id") or "no candidate"
        print(f"   ⚠️ {item['name']} ({item['id']}): {item['variant_count']} variants -> {candidate}")

    awaiting = results.get("awaiting_inventory", [])
    if awaiting:
        print(f"Sold variants not yet synced from terminals: {len(awaiting)}")
        for variant_id in awaiting:
            print(f"   ⏳ {variant_id}")

def main() -> int:
    parser = argparse.ArgumentParser(description="Trigger placeholder cleanup on the central service")
    parser.add_argument("base_url", nargs="?", default="http://localhost:8000", help="Central service URL")
    parser.add_argument("--timeout", type=float, default=30)
    args = parser.parse_args()

    try:
        results = trigger_cleanup(args.base_url, args.timeout)
    except requests.exceptions.RequestException as e:
        print(f"❌ Cleanup request failed: {e}")
        return 1

    print_results(results)
    return 0

if __name__ == "__main__":
    sys.exit(main())
