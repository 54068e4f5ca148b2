#!/usr/bin/env python3
"""
Check that the transaction endpoint answers before starting a load test
"""

import asyncio
import sys
from typing import Optional

import httpx

from config import DEFAULT_CONFIG, RunConfig
from payload import IterationContext, build_payload

PROBE_VU_ID = 1


async def check_endpoint(config: RunConfig = DEFAULT_CONFIG, transport: Optional[httpx.AsyncBaseTransport] = None) -> dict:
    """Send one sample transaction and describe how the endpoint answered"""
    ctx = IterationContext(vu_id=PROBE_VU_ID, iteration=0)
    payload = build_payload(ctx, config.rng_for(PROBE_VU_ID), config)

    try:
        async with httpx.AsyncClient(transport=transport) as client:
            try:
                response = await client.post(
                    config.endpoint_url,
                    content=payload.model_dump_json(),
                    headers=config.headers,
                    timeout=5.0,
                )
                return {
                    "url": config.endpoint_url,
                    "status": "responsive",
                    "http_status": response.status_code,
                    "order_id": payload.internalOrderId,
                    "content": response.text[:200] + "..." if len(response.text) > 200 else response.text
                }
            except httpx.ConnectError:
                return {"url": config.endpoint_url, "status": "connection_refused"}
            except httpx.TimeoutException:
                return {"url": config.endpoint_url, "status": "timeout"}

    except Exception as e:
        return {"url": config.endpoint_url, "status": "error", "error": str(e)}


def run_probe(config: RunConfig = DEFAULT_CONFIG, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    """Print a short report; exit code 0 only when the endpoint returned the expected status"""
    print(f"Probing {config.endpoint_url} ...")
    print("=" * 60)

    result = asyncio.run(check_endpoint(config, transport))

    if result["status"] != "responsive":
        print(f"❌ Endpoint not reachable: {result['status']}")
        if "error" in result:
            print(f"Error: {result['error']}")
        print("\nTry checking:")
        print("1. Is the middleware (or `python main.py`) running?")
        print(f"2. Does it listen on {config.base_url}?")
        return 1

    status = result["http_status"]
    print(f"\n🌐 HTTP {status} for order {result['order_id']}")
    print(f"Content preview: {result['content'][:100]}")

    if status == config.expected_status:
        print("✅ Endpoint accepts transactions, ready for the load test")
        return 0
    if status in (401, 403):
        print("❌ API key rejected, check API_KEY in config.py")
    elif status == 400:
        print("❌ Payload rejected by validation")
    else:
        print(f"❌ Expected HTTP {config.expected_status}")
    return 1


if __name__ == "__main__":
    sys.exit(run_probe())
