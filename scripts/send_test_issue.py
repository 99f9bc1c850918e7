"""
Send a test issue to the ingestion API.

Usage:
    python scripts/send_test_issue.py --key "<key_id>.<secret>"
    python scripts/send_test_issue.py --key "<key_id>.<secret>" --external-id ORD-1 --repeat 2
"""
import argparse
import asyncio
import logging
import uuid

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


async def send_issue(base_url: str, api_key: str, payload: dict) -> httpx.Response:
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(
            f"{base_url}/api/v1/integrations/issues", json=payload, headers=headers,
        )
        logger.info("Issue response: %s %s", resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Send a test issue")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--key", default="", help="Integration API key; omit for internal ingestion")
    parser.add_argument("--source", default="courier_portal")
    parser.add_argument("--external-id", default=None)
    parser.add_argument("--order-number", default="ORD-10001")
    parser.add_argument("--issue-type", default="DELIVERY")
    parser.add_argument("--priority", default=None)
    parser.add_argument("--reason-id", default=None)
    parser.add_argument("--repeat", type=int, default=1, help="Resend the same payload N times")
    args = parser.parse_args()

    payload = {
        "source": args.source,
        "external_id": args.external_id or f"test-{uuid.uuid4().hex[:12]}",
        "order_number": args.order_number,
        "issue_type": args.issue_type,
        "title": "Parcel not delivered",
        "description": "Customer reports the parcel was marked delivered but never arrived.",
        "courier_company": "Test Courier",
    }
    if args.priority:
        payload["priority"] = args.priority
    if args.reason_id:
        payload["reason_id"] = args.reason_id

    for _ in range(max(args.repeat, 1)):
        await send_issue(args.base_url, args.key, payload)


if __name__ == "__main__":
    asyncio.run(main())
