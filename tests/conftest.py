import httpx
import pytest
from eth_account import Account

from spoon_pay.payments import (
    PAYMENT_HEADER,
    PaymentClientConfig,
    PaymentService,
    PaymentSettings,
    PaymentTransport,
)

RESOURCE_URL = "https://paid.example/weather"
PAY_TO = "0x903918bB1903714E0518Ea2122aCeBfa27f11b6F"
USDC_BASE_SEPOLIA = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


class StubResource:
    """Paid resource double for ``httpx.MockTransport``; records every request it sees."""

    def __init__(self, status_code: int = 200, json_body=None, headers=None):
        self.status_code = status_code
        self.json_body = json_body if json_body is not None else {"location": "Lisbon", "temperature": 21}
        self.headers = headers or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.json_body, headers=self.headers)

    @property
    def paid_requests(self):
        return [r for r in self.requests if PAYMENT_HEADER in r.headers]

    @property
    def unpaid_requests(self):
        return [r for r in self.requests if PAYMENT_HEADER not in r.headers]


@pytest.fixture
def private_key():
    key = Account.create().key.hex()
    if not key.startswith("0x"):
        key = "0x" + key
    return key


@pytest.fixture
def payer_address(private_key):
    return Account.from_key(private_key).address


@pytest.fixture
def settings(private_key):
    return PaymentSettings(resource=RESOURCE_URL, client=PaymentClientConfig(private_key=private_key))


@pytest.fixture
def stub_resource():
    return StubResource()


@pytest.fixture
def service(settings, stub_resource):
    transport = PaymentTransport(retry_backoff=0, transport=httpx.MockTransport(stub_resource))
    return PaymentService(settings, transport=transport)
