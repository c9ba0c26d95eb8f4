import pytest

from spoon_pay.approval import ApprovalGate
from spoon_pay.tools import PaidResourceTool, ToolResult


@pytest.fixture
def tool(service):
    return PaidResourceTool(gate=ApprovalGate(service))


def test_tool_schema(tool):
    param = tool.to_param()

    assert param["type"] == "function"
    assert param["function"]["name"] == "paid_resource_request"
    assert param["function"]["parameters"]["required"] == ["message", "session_id"]
    assert "gate" not in tool.model_dump()


@pytest.mark.asyncio
async def test_prompt_then_pay(tool, stub_resource):
    prompted = await tool.execute(message="Is it going to rain? Check the weather.", session_id="room-1")

    assert prompted.error is None
    assert prompted.output["decision"] == "PROMPTED"
    assert prompted.output["state"] == "AWAITING_APPROVAL"
    assert prompted.output["prompt"]["terms"]["amount_atomic"] == 1000

    paid = await tool(message="yes", session_id="room-1")

    assert paid.error is None
    assert paid.output["decision"] == "PAID"
    assert paid.output["outcome"]["data"] == {"location": "Lisbon", "temperature": 21}
    assert len(stub_resource.paid_requests) == 1


@pytest.mark.asyncio
async def test_failed_payment_sets_error(tool, stub_resource):
    stub_resource.status_code = 402
    stub_resource.json_body = {"error": "Payment verification failed", "invalidReason": "invalid_signature"}

    await tool.execute(message="weather please", session_id="room-1")
    result = await tool.execute(message="approve", session_id="room-1")

    assert result.output["decision"] == "PAYMENT_FAILED"
    assert result.error == "Payment processing failed: Payment verification failed"
    assert str(result).startswith("Error:")


@pytest.mark.asyncio
async def test_denied_approval_is_not_an_error(tool, stub_resource):
    result = await tool.execute(message="ok", session_id="room-1")

    assert result.error is None
    assert result.output["decision"] == "APPROVAL_DENIED"
    assert stub_resource.requests == []


def test_tool_result_rendering():
    assert set(ToolResult.model_fields) == {"output", "error"}
    assert str(ToolResult(output={"decision": "PAID"})) == "Output: {'decision': 'PAID'}"
    assert str(ToolResult(output={}, error="Payment declined")) == "Error: Payment declined"
