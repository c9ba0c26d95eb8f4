from __future__ import annotations

from typing import Any, Dict

from pydantic import Field

from spoon_pay.approval import ApprovalGate, GateDecision
from spoon_pay.tools.base import BaseTool, ToolResult


class PaidResourceTool(BaseTool):
    """Route a user message through the payment approval gate."""

    name: str = "paid_resource_request"
    description: str = (
        "Request a paid resource. The first call prompts the user to approve a small USDC payment; "
        "pass the user's reply on the next call to pay (approve) or fetch without payment (reject)."
    )
    parameters: Dict[str, Any] = {
        "type": "object",
        "properties": {
            "message": {"type": "string", "description": "The user's message, verbatim"},
            "session_id": {"type": "string", "description": "Conversation or room identifier"},
        },
        "required": ["message", "session_id"],
        "additionalProperties": False,
    }

    gate: ApprovalGate = Field(exclude=True)

    async def execute(self, message: str, session_id: str) -> ToolResult:
        result = await self.gate.handle(session_id, message)
        payload = result.model_dump(mode="json", exclude_none=True)

        if result.decision in (GateDecision.PAYMENT_FAILED, GateDecision.ERROR):
            return ToolResult(output=payload, error=result.text)
        if result.decision is GateDecision.REJECTED and result.outcome is not None and not result.outcome.success:
            return ToolResult(output=payload, error=result.text)
        return ToolResult(output=payload)
