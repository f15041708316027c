"""Quickstart: mirror an FTP repository into a local folder.

Demonstrates:
- Describing a repository and engine settings
- Running a sync with a progress callback
- Reading the outcome and counters
"""

from __future__ import annotations

import asyncio
import logging
import sys

from remote_mirror import Mirror, MirrorConfig, Repository


async def main(host: str, destination: str) -> int:
    repository = Repository(host=host, name=host)
    mirror = Mirror(MirrorConfig(scan_concurrency=4, transfer_concurrency=4))

    print(mirror.describe_cache(repository))
    result = await mirror.sync(repository, destination, progress=print)

    counters = result.counters
    print(f"Outcome: {result.outcome.value}")
    print(f"Downloaded {counters.downloaded}, skipped {counters.skipped}, deleted {counters.deleted}")
    if result.error is not None:
        print(f"Error: {result.error}")
    return 0 if result.success else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    if len(sys.argv) != 3:
        print("usage: quickstart.py HOST DESTINATION")
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2])))
