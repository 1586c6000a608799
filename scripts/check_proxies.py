#!/usr/bin/env python3
"""
Check GraphSnap proxy health
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from graphsnap.core.proxy_pool import ProxyPool, mask_proxy_url
from graphsnap.utils.config import APP_NAME, APP_VERSION, PROXY_CHECK_TIMEOUT
from graphsnap.utils.logging import setup_logging


def print_report(report) -> None:
    """Print a health check report."""
    healthy = [r for r in report.results if r.success]
    dead = [r for r in report.results if not r.success]

    print("\n" + "=" * 70)
    print("PROXY HEALTH CHECK RESULTS")
    print("=" * 70)

    print("\nHEALTHY PROXIES:")
    if not healthy:
        print("   (none)")
    for i, result in enumerate(healthy, 1):
        print(f"   {i}. {mask_proxy_url(result.proxy)}")
        print(f"      IP: {result.ip} | Latency: {result.latency}ms")

    print("\nDEAD PROXIES:")
    if not dead:
        print("   (none)")
    for i, result in enumerate(dead, 1):
        print(f"   {i}. {mask_proxy_url(result.proxy)}")
        print(f"      Error: {result.error}")

    print("\n" + "-" * 70)
    print(f"Summary: {report.healthy} healthy, {report.dead} dead out of {report.total} total")
    if report.fastest:
        print(f"Average latency: {report.average_latency}ms | Fastest: {report.fastest.latency}ms")
    print()


def print_usage():
    """Print usage information."""
    print(f"{APP_NAME} {APP_VERSION} Proxy Checker")
    print("\nUsage:")
    print("  python scripts/check_proxies.py [timeout]")
    print("\nProxies are read from PROXY_LIST_FILE or PROXY_URL (PROXY_ENABLED=true).")
    print(f"Timeout is in seconds per proxy (default: {PROXY_CHECK_TIMEOUT:g}).")


async def main():
    """Main entry point."""
    args = sys.argv[1:]

    if args and args[0] in ["-h", "--help", "help"]:
        print_usage()
        return

    try:
        timeout = float(args[0]) if args else PROXY_CHECK_TIMEOUT
    except ValueError:
        print(f"Invalid timeout: {args[0]}\n")
        print_usage()
        return

    setup_logging()
    pool = ProxyPool.from_config()
    if not pool.active:
        print("No proxies configured. Set PROXY_ENABLED=true and PROXY_URL or PROXY_LIST_FILE.")
        return

    report = await pool.health_check_all(timeout=timeout)
    print_report(report)


if __name__ == "__main__":
    asyncio.run(main())
