"""
Shared fixtures for the Tesco client tests.

The fake transport (see fakes.py) records every query so tests can assert
exactly which requests were sent without any network access.
"""

import pytest

from tesco.client import TescoClient

from fakes import FakeTransport, customer_login


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def client(transport: FakeTransport) -> TescoClient:
    return TescoClient(developer_key="dev-key", application_key="app-key", transport=transport)


@pytest.fixture
def customer_client(client: TescoClient, transport: FakeTransport) -> TescoClient:
    """A client logged in as customer 42."""
    transport.on("login", customer_login(42))
    client.login("a@b.com", "pw")
    transport.reset()
    return client
