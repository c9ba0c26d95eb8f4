"""
Demonstration of the approval-gated payment flow.

This walkthrough runs one conversation against the configured paid resource:
1. Load configuration (config.json + .env overrides).
2. Ask for a weather report and show the payment prompt.
3. Approve it: the gate signs an EIP-3009 authorization and sends the X-PAYMENT header.
4. Show the resource data and the decoded X-PAYMENT-RESPONSE receipt.

Requires X402_AGENT_PRIVATE_KEY for a wallet holding test USDC on Base Sepolia
(https://faucet.circle.com/). Pass --reject to decline the payment instead.

Run with:
    uv run python examples/paid_resource_demo.py
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict

from spoon_pay.approval import ApprovalGate
from spoon_pay.payments import PaymentSettings
from spoon_pay.tools import PaidResourceTool


def _print_section(title: str, payload: Dict[str, Any]) -> None:
    print(f"\n=== {title} ===")
    print(json.dumps(payload, indent=2, default=str))


async def main(reject: bool = False) -> None:
    settings = PaymentSettings.load()
    tool = PaidResourceTool(gate=ApprovalGate.from_settings(settings))
    session_id = "demo-session"

    prompted = await tool.execute(message="What's the weather in Lisbon?", session_id=session_id)
    _print_section("Payment Prompt", prompted.output)

    reply = "no thanks" if reject else "yes, go ahead"
    print(f"\nUser replies: {reply!r}")
    result = await tool.execute(message=reply, session_id=session_id)
    _print_section("Gate Result", result.output)
    if result.error:
        print(f"\nError: {result.error}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    asyncio.run(main(reject="--reject" in sys.argv[1:]))
