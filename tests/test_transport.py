import io
import json
import sys
from collections import deque
from pathlib import Path

import httpx
import pytest

from fakes import ScriptedService
from mcp_relay.config import ProviderConfig, TransportKind
from mcp_relay.conversation import ConversationLoop
from mcp_relay.errors import InvokeError, TransportError
from mcp_relay.registry import SessionRegistry
from mcp_relay.session import ProviderSession
from mcp_relay.transport import (
    JsonRpcRequest,
    SseTransport,
    StdioTransport,
    StreamableHttpTransport,
    create_transport,
    iter_sse_events,
)
from mcp_relay.turns import CallRequest, Completion

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _reply(body: dict, result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": body["id"], "result": result}


def _tools_result() -> dict:
    return {
        "tools": [
            {
                "name": "echo",
                "description": "Echo",
                "inputSchema": {"type": "object", "properties": {"message": {"type": "string"}}},
            }
        ]
    }


def _call_result(body: dict) -> dict:
    message = body["params"]["arguments"]["message"]
    return {"content": [{"type": "text", "text": message.upper()}]}


@pytest.mark.parametrize(
    ("kind", "target", "expected"),
    [
        (TransportKind.SUBPROCESS, "python3 -m mcp_relay.servers.echo", StdioTransport),
        (TransportKind.SSE, "http://localhost:3001/sse", SseTransport),
        (TransportKind.STREAMABLE_HTTP, "http://localhost:3000/mcp", StreamableHttpTransport),
    ],
)
def test_create_transport_selects_variant(kind: TransportKind, target: str, expected: type) -> None:
    transport = create_transport(ProviderConfig(name="p", transport=kind, target=target))
    assert isinstance(transport, expected)
    assert not transport.is_alive()


def test_stdio_command_line_expands_home(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", "/home/tester")
    transport = StdioTransport.from_command_line("node ~/servers/build/index.js --flag 'two words'")
    assert transport.command == ["node", "/home/tester/servers/build/index.js", "--flag", "two words"]


@pytest.mark.parametrize(
    "transport",
    [
        StdioTransport(["true"]),
        SseTransport("http://localhost:3001/sse"),
        StreamableHttpTransport("http://localhost:3000/mcp"),
    ],
)
def test_stop_before_start_is_a_no_op(transport) -> None:
    transport.stop()
    transport.stop()
    assert not transport.is_alive()


def test_send_before_start_raises() -> None:
    transport = StdioTransport(["true"])
    with pytest.raises(TransportError, match="not running"):
        transport.send(JsonRpcRequest(method="ping", params={}, id=1))


def test_stdio_launch_failure_is_a_transport_error() -> None:
    transport = StdioTransport(["definitely-not-a-real-binary-xyz"])
    with pytest.raises(TransportError, match="Could not launch"):
        transport.start()


def test_stdio_round_trip_with_echo_server() -> None:
    transport = StdioTransport(
        [sys.executable, "-m", "mcp_relay.servers.echo"],
        env={"PYTHONPATH": str(PROJECT_ROOT)},
    )
    config = ProviderConfig(name="echo", transport=TransportKind.SUBPROCESS, target="unused")
    session = ProviderSession.connect(config, transport=transport)
    try:
        assert [c.name for c in session.list_capabilities()] == ["echo"]
        assert session.server_info["name"] == "echo"

        result = session.invoke("echo", {"message": "hi"})
        assert json.loads(result.content) == {"echoed": "hi", "length": 2}
        assert result.is_error is False

        bad = session.invoke("echo", {"message": 42})
        assert bad.is_error is True
    finally:
        session.close()
    assert not transport.is_alive()


def test_iter_sse_events_groups_lines() -> None:
    lines = [
        ": keep-alive",
        "event: endpoint",
        "data: /messages?sid=1",
        "",
        "data: {\"a\":",
        "data: 1}",
        "",
        "data: trailing",
    ]
    assert list(iter_sse_events(iter(lines))) == [
        ("endpoint", "/messages?sid=1"),
        ("message", "{\"a\":\n1}"),
        ("message", "trailing"),
    ]


def test_streamable_http_session_lifecycle() -> None:
    seen: list[tuple[str, str | None, str | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        session_header = request.headers.get("mcp-session-id")
        if request.method == "DELETE":
            seen.append(("DELETE", None, session_header))
            return httpx.Response(200)

        body = json.loads(request.content)
        seen.append(("POST", body["method"], session_header))
        if "id" not in body:
            return httpx.Response(202)
        if body["method"] == "initialize":
            return httpx.Response(
                200,
                json=_reply(body, {"serverInfo": {"name": "mock-http"}}),
                headers={"Mcp-Session-Id": "session-1"},
            )
        if body["method"] == "tools/list":
            stream = (
                "event: message\n"
                'data: {"jsonrpc": "2.0", "method": "notifications/message", "params": {}}\n\n'
                f"event: message\ndata: {json.dumps(_reply(body, _tools_result()))}\n\n"
            )
            return httpx.Response(200, text=stream, headers={"content-type": "text/event-stream"})
        return httpx.Response(200, json=_reply(body, _call_result(body)))

    client = httpx.Client(transport=httpx.MockTransport(handler))
    transport = StreamableHttpTransport("http://mock/mcp", client=client)
    config = ProviderConfig(name="remote", transport=TransportKind.STREAMABLE_HTTP, target="http://mock/mcp")

    session = ProviderSession.connect(config, transport=transport)
    assert session.server_info == {"name": "mock-http"}
    assert [c.name for c in session.list_capabilities()] == ["echo"]
    assert session.invoke("echo", {"message": "hi"}).content == "HI"

    session.close()
    assert seen == [
        ("POST", "initialize", None),
        ("POST", "notifications/initialized", "session-1"),
        ("POST", "tools/list", "session-1"),
        ("POST", "tools/call", "session-1"),
        ("DELETE", None, "session-1"),
    ]


def test_streamable_http_error_status_is_a_transport_error() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")))
    transport = StreamableHttpTransport("http://mock/mcp", client=client)
    transport.start()
    with pytest.raises(TransportError, match="HTTP 500"):
        transport.send(JsonRpcRequest(method="tools/list", params={}, id=1))
    transport.stop()


def _sse_handler(pending: deque, posted: list):
    def stream():
        yield b"event: endpoint\ndata: /messages?session_id=1\n\n"
        while pending:
            yield pending.popleft()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=stream())

        posted.append(str(request.url))
        body = json.loads(request.content)
        if "id" in body:
            if body["method"] == "initialize":
                result = {"serverInfo": {"name": "mock-sse"}}
            elif body["method"] == "tools/list":
                result = _tools_result()
            else:
                result = _call_result(body)
            pending.append(b"event: ping\ndata: {}\n\n")
            pending.append(f"event: message\ndata: {json.dumps(_reply(body, result))}\n\n".encode())
        return httpx.Response(202)

    return handler


def test_sse_transport_round_trip() -> None:
    pending: deque = deque()
    posted: list[str] = []
    client = httpx.Client(transport=httpx.MockTransport(_sse_handler(pending, posted)))
    transport = SseTransport("http://mock/sse", client=client)
    config = ProviderConfig(name="events", transport=TransportKind.SSE, target="http://mock/sse")

    session = ProviderSession.connect(config, transport=transport)
    assert transport.endpoint == "http://mock/messages?session_id=1"
    assert session.server_info == {"name": "mock-sse"}
    assert session.invoke("echo", {"message": "ok"}).content == "OK"

    session.close()
    assert not transport.is_alive()
    assert set(posted) == {"http://mock/messages?session_id=1"}
    assert len(posted) == 4  # initialize, initialized, tools/list, tools/call


def test_sse_stream_without_endpoint_fails_to_start() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=b"data: hello\n\n")

    transport = SseTransport("http://mock/sse", client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(TransportError, match="endpoint"):
        transport.start()
    assert not transport.is_alive()


class _GarbledStdout:
    def readline(self) -> str:
        raise UnicodeDecodeError("utf-8", b"\xff\xfe", 0, 1, "invalid start byte")


class _RunningProcess:
    def __init__(self):
        self.stdin = io.StringIO()
        self.stdout = _GarbledStdout()

    def poll(self):
        return None


def test_stdio_undecodable_output_is_a_transport_error() -> None:
    transport = StdioTransport(["unused"])
    transport._process = _RunningProcess()

    with pytest.raises(TransportError, match="Could not read from tool server"):
        transport.send(JsonRpcRequest(method="tools/call", params={}, id=1))


GARBLED_SERVER = """
import json, sys
for line in sys.stdin:
    message = json.loads(line)
    if "id" not in message:
        continue
    if message["method"] == "initialize":
        result = {"serverInfo": {"name": "garbled"}}
    elif message["method"] == "tools/list":
        result = {"tools": [{"name": "broken"}]}
    else:
        sys.stdout.buffer.write(b"\\xff\\xfe\\n")
        sys.stdout.buffer.flush()
        break
    sys.stdout.write(json.dumps({"jsonrpc": "2.0", "id": message["id"], "result": result}) + "\\n")
    sys.stdout.flush()
"""


def test_garbled_tool_server_output_degrades_the_call() -> None:
    transport = StdioTransport([sys.executable, "-c", GARBLED_SERVER])
    config = ProviderConfig(name="bad", transport=TransportKind.SUBPROCESS, target="unused")
    registry = SessionRegistry()
    registry.add("bad", ProviderSession.connect(config, transport=transport))
    service = ScriptedService(
        [Completion(calls=[CallRequest(id="c1", name="bad__broken", arguments={})]), Completion(text="done")]
    )
    try:
        output = ConversationLoop(registry, service).run("go")
    finally:
        registry.close_all()

    assert "[Error: Tool call failed (bad/broken):" in output
    assert output.endswith("done")


def _failing_sse_handler(pending: deque, state: dict):
    def stream():
        yield b"event: endpoint\ndata: /messages\n\n"
        while True:
            if state["mode"] == "raise":
                raise httpx.ReadTimeout("timed out")
            if not pending:
                return
            yield pending.popleft()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=stream())
        body = json.loads(request.content)
        if "id" in body and state["mode"] == "ok":
            result = {"serverInfo": {}} if body["method"] == "initialize" else _tools_result()
            pending.append(f"event: message\ndata: {json.dumps(_reply(body, result))}\n\n".encode())
        return httpx.Response(202)

    return handler


@pytest.mark.parametrize("mode", ["raise", "end"])
def test_sse_stream_failure_closes_the_transport(mode: str) -> None:
    pending: deque = deque()
    state = {"mode": "ok"}
    client = httpx.Client(transport=httpx.MockTransport(_failing_sse_handler(pending, state)))
    transport = SseTransport("http://mock/sse", client=client)
    config = ProviderConfig(name="events", transport=TransportKind.SSE, target="http://mock/sse")
    session = ProviderSession.connect(config, transport=transport)

    state["mode"] = mode
    with pytest.raises(InvokeError, match="Event stream"):
        session.invoke("echo", {"message": "hi"})

    assert not transport.is_alive()
    with pytest.raises(InvokeError, match="not running"):
        session.invoke("echo", {"message": "again"})
    session.close()
