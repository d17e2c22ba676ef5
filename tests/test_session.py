import pytest

from fakes import FakeTransport, connect_fake, provider_config, tool_schema
from mcp_relay.config import ProviderConfig, TransportKind
from mcp_relay.errors import ConnectError, InvokeError, TransportError
from mcp_relay.session import CallResult, CapabilityDescriptor, ProviderSession
from mcp_relay.transport import JsonRpcResponse


def test_connect_runs_handshake_and_caches_tools() -> None:
    transport = FakeTransport(tools=[tool_schema("get-alerts", state="string"), tool_schema("ping")])
    session = connect_fake("alerts", transport)

    assert [r.method for r in transport.sent] == ["initialize", "tools/list"]
    assert transport.sent[0].params["protocolVersion"] == "2024-11-05"
    assert [n.method for n in transport.notifications] == ["notifications/initialized"]
    assert session.server_info == {"name": "fake", "version": "1"}

    capabilities = session.list_capabilities()
    assert [c.name for c in capabilities] == ["get-alerts", "ping"]
    assert capabilities[0].input_schema["required"] == ["state"]
    assert len(transport.sent) == 2


def test_list_capabilities_refresh_refetches() -> None:
    transport = FakeTransport(tools=[tool_schema("a")])
    session = connect_fake("p", transport)
    transport.tools = [tool_schema("a"), tool_schema("b")]

    assert [c.name for c in session.list_capabilities()] == ["a"]
    assert [c.name for c in session.list_capabilities(refresh=True)] == ["a", "b"]


def test_tools_list_pagination_is_followed() -> None:
    class PagedTransport(FakeTransport):
        def send(self, request):
            if request.method == "tools/list":
                self.sent.append(request)
                if request.params.get("cursor") == "page-2":
                    return JsonRpcResponse(id=request.id, result={"tools": [tool_schema("second")]})
                return JsonRpcResponse(
                    id=request.id, result={"tools": [tool_schema("first")], "nextCursor": "page-2"}
                )
            return super().send(request)

    session = connect_fake("paged", PagedTransport())
    assert [c.name for c in session.list_capabilities()] == ["first", "second"]


@pytest.mark.parametrize(
    "transport",
    [
        FakeTransport(fail_start=TransportError("connection refused")),
        FakeTransport(reject_initialize=True),
        FakeTransport(tools=[{"description": "no name"}]),
    ],
)
def test_connect_failure_closes_transport_and_raises_connect_error(transport: FakeTransport) -> None:
    with pytest.raises(ConnectError) as excinfo:
        connect_fake("alerts", transport)
    assert excinfo.value.provider == "alerts"
    assert excinfo.value.cause is not None
    assert transport.stop_calls == 1


def test_invoke_returns_text_content(alerts_transport: FakeTransport) -> None:
    session = connect_fake("alerts", alerts_transport)
    result = session.invoke("get-alerts", {"state": "NY"})

    assert result.content.startswith("Active alerts for NY")
    assert result.is_error is False
    assert alerts_transport.calls == [("get-alerts", {"state": "NY"})]


def test_invoke_reports_provider_tool_errors_without_raising() -> None:
    transport = FakeTransport(
        tools=[tool_schema("div")],
        results={"div": {"content": [{"type": "text", "text": "division by zero"}], "isError": True}},
    )
    result = connect_fake("calc", transport).invoke("div", {"a": 1, "b": 0})
    assert result == CallResult(content="division by zero", is_error=True, raw=result.raw)


def test_invoke_wraps_rpc_errors() -> None:
    session = connect_fake("alerts", FakeTransport(tools=[tool_schema("get-alerts")]))
    with pytest.raises(InvokeError) as excinfo:
        session.invoke("missing", {})
    assert excinfo.value.provider == "alerts"
    assert excinfo.value.tool == "missing"
    assert "Unknown tool" in str(excinfo.value)


def test_invoke_wraps_transport_failures() -> None:
    transport = FakeTransport(tools=[tool_schema("t")], results={"t": TransportError("process exited")})
    with pytest.raises(InvokeError, match="process exited"):
        connect_fake("p", transport).invoke("t", {})


def test_close_is_idempotent() -> None:
    transport = FakeTransport()
    session = connect_fake("p", transport)
    session.close()
    session.close()
    assert session.closed
    assert transport.stop_calls == 1


def test_call_result_renders_mixed_content() -> None:
    result = CallResult.from_result(
        {
            "content": [
                {"type": "text", "text": "line one"},
                {"type": "image", "data": "AAAA", "mimeType": "image/png"},
            ]
        }
    )
    first, rest = result.content.split("\n", 1)
    assert first == "line one"
    assert '"mimeType": "image/png"' in rest


def test_capability_descriptor_accepts_legacy_parameters_key() -> None:
    descriptor = CapabilityDescriptor.from_schema(
        {"name": "calc", "parameters": {"type": "object", "properties": {"x": {"type": "number"}}}}
    )
    assert descriptor.input_schema["properties"] == {"x": {"type": "number"}}
    assert descriptor.description == ""

    bare = CapabilityDescriptor.from_schema({"name": "noop"})
    assert bare.input_schema == {"type": "object", "properties": {}}


def test_connect_uses_configured_transport_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport(tools=[tool_schema("t")])
    monkeypatch.setattr("mcp_relay.session.create_transport", lambda config: transport)

    session = ProviderSession.connect(provider_config("p"))
    assert transport.started
    assert session.name == "p"


def test_transport_construction_failure_is_a_connect_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(config):
        raise ValueError("No closing quotation")

    monkeypatch.setattr("mcp_relay.session.create_transport", refuse)
    with pytest.raises(ConnectError, match="No closing quotation") as excinfo:
        ProviderSession.connect(provider_config("p"))
    assert isinstance(excinfo.value.cause, ValueError)


def test_unclosed_quote_in_command_line_is_a_connect_error() -> None:
    config = ProviderConfig(name="broken", transport=TransportKind.SUBPROCESS, target="python3 'unterminated")
    with pytest.raises(ConnectError) as excinfo:
        ProviderSession.connect(config)
    assert excinfo.value.provider == "broken"


def test_unexpected_start_error_is_a_connect_error() -> None:
    transport = FakeTransport(fail_start=RuntimeError("segfault in driver"))
    with pytest.raises(ConnectError, match="segfault in driver"):
        connect_fake("p", transport)
    assert transport.stop_calls == 1


@pytest.mark.parametrize(
    "error",
    [RuntimeError("boom"), UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"), KeyError("id")],
)
def test_invoke_wraps_any_exchange_failure(error: Exception) -> None:
    transport = FakeTransport(tools=[tool_schema("t")], results={"t": error})
    with pytest.raises(InvokeError) as excinfo:
        connect_fake("p", transport).invoke("t", {})
    assert excinfo.value.cause is error
