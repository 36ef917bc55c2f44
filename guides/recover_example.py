"""Resume interrupted workflows from a SQLite store.

Run ``fetch_with_retry_example.py`` with
``DURAFETCH_DATABASE_URL=sqlite://durafetch.db`` and a short wait, stop it
during a backoff, then run this script: recorded attempts are replayed and
only the remaining ones are executed.
"""

import asyncio
import logging
import os

from durafetch import build_client


async def main():
    logging.basicConfig(level=logging.INFO)
    os.environ.setdefault("DURAFETCH_DATABASE_URL", "sqlite://durafetch.db")

    client = build_client()
    resumed = await client.host.recover()
    print(f"Resuming {len(resumed)} workflow(s)")
    await client.host.join()

    for instance_id in resumed:
        wf = await client.get_status(instance_id)
        print(f"{instance_id}: {wf.status.value} {wf.result}")


if __name__ == "__main__":
    asyncio.run(main())
