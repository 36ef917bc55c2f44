"""Start a fetch_fixed_http workflow and wait for it with a bounded timeout."""

import asyncio
import logging

from durafetch import HttpRequestSpec, PendingStatus, RetryPolicy, build_client


async def main():
    logging.basicConfig(level=logging.INFO)

    # In-memory store unless DURAFETCH_DATABASE_URL points at sqlite:// or postgresql://
    client = build_client()

    instance_id, outcome = await client.start_and_wait(
        wait=30,
        request=HttpRequestSpec(uri="https://httpbin.org/status/503"),
        retry=RetryPolicy(max_attempts=3, initial_backoff=1),
    )

    print(f"Instance ID: {instance_id}")
    if isinstance(outcome, PendingStatus):
        print(f"Still {outcome.status.value}, poll {outcome.status_url}")
    else:
        print(f"Finished with {outcome.status_code}")

    await client.host.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
