import pytest

from fakes import FakeTransport, connect_fake, tool_schema
from mcp_relay.registry import SessionRegistry


@pytest.fixture
def alerts_transport() -> FakeTransport:
    return FakeTransport(
        tools=[tool_schema("get-alerts", state="string")],
        results={"get-alerts": "Active alerts for NY:\n\nEvent: Flood Warning"},
    )


@pytest.fixture
def geo_transport() -> FakeTransport:
    return FakeTransport(
        tools=[tool_schema("get-forecast", latitude="number", longitude="number")],
        results={"get-forecast": "Forecast for 40.7, -74.0:\n\nTonight: clear"},
    )


@pytest.fixture
def registry(alerts_transport: FakeTransport, geo_transport: FakeTransport) -> SessionRegistry:
    registry = SessionRegistry()
    registry.add("alerts", connect_fake("alerts", alerts_transport))
    registry.add("geo", connect_fake("geo", geo_transport))
    return registry
