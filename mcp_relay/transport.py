"""
Transport layer for talking to tool providers.

Implements:
  - StdioTransport: JSON-RPC over stdin/stdout pipes of a child process
  - StreamableHttpTransport: JSON-RPC POSTed to one URL, replies as JSON
    or as an event stream
  - SseTransport: a long-lived event stream for replies, plus POSTs to
    the endpoint the stream announces

All three expose the same start/stop/send/notify surface. Which one a
provider gets is decided once, by create_transport(), from its config.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator
from urllib.parse import urljoin

import httpx

from mcp_relay.config import ProviderConfig, TransportKind
from mcp_relay.errors import ConfigError, TransportError

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request."""
    method: str
    params: dict[str, Any]
    id: int | str

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "method": self.method,
            "params": self.params,
            "id": self.id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class JsonRpcNotification:
    """JSON-RPC 2.0 notification (no id, no reply)."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "method": self.method, "params": self.params}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_dict(cls, parsed: dict[str, Any]) -> "JsonRpcResponse":
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=parsed.get("error"),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> str:
        if not self.error:
            return ""
        message = self.error.get("message", "unknown error")
        code = self.error.get("code")
        return f"{message} (code {code})" if code is not None else message


def _match_reply(message: Any, request_id: int | str) -> JsonRpcResponse | None:
    """Return the response for request_id, or None for anything else."""
    if not isinstance(message, dict):
        logger.warning(f"Ignoring non-object message: {message!r}")
        return None
    if "method" in message:
        # Server-initiated request or notification; nothing here answers them.
        logger.debug(f"Ignoring server message: {message.get('method')}")
        return None
    if message.get("id") != request_id:
        logger.debug(f"Ignoring reply for unexpected id {message.get('id')!r}")
        return None
    return JsonRpcResponse.from_dict(message)


class Transport(ABC):
    """Abstract transport to one tool provider."""

    def __init__(self) -> None:
        self._request_id = 0

    @abstractmethod
    def start(self) -> None:
        """Open the channel (launch subprocess, open connection)."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Close the channel. Safe to call repeatedly or before start()."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the channel is open."""
        ...

    @abstractmethod
    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Send a request and block until its response arrives."""
        ...

    @abstractmethod
    def notify(self, notification: JsonRpcNotification) -> None:
        """Send a one-way message."""
        ...

    def next_id(self) -> int:
        """Generate the next request ID."""
        self._request_id += 1
        return self._request_id


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    The tool server runs as a child process. We write JSON-RPC messages
    to its stdin and read replies from its stdout. One line = one
    message. The child's stderr is inherited so its logs stay visible.
    """

    def __init__(self, command: list[str], env: dict[str, str] | None = None):
        """
        Args:
            command: Command to launch the tool server process.
                     e.g., ["python3", "-m", "mcp_relay.servers.echo"]
            env: Extra environment variables, layered over ours.
        """
        super().__init__()
        if not command:
            raise ConfigError("Invalid shell command: empty")
        self.command = command
        self.env = env
        self._process: subprocess.Popen | None = None

    @classmethod
    def from_command_line(
        cls, command_line: str, env: dict[str, str] | None = None
    ) -> "StdioTransport":
        """Split a shell-style command line, expanding ~/ arguments."""
        parts = shlex.split(command_line)
        parts = [os.path.expanduser(p) if p.startswith("~/") else p for p in parts]
        return cls(parts, env)

    def start(self) -> None:
        """Launch the tool server subprocess."""
        if self.is_alive():
            logger.warning("Transport already running, stopping first")
            self.stop()

        logger.info(f"Starting stdio transport: {' '.join(self.command)}")
        env = {**os.environ, **self.env} if self.env else None
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                text=True,
                env=env,
                bufsize=1,  # Line-buffered
            )
        except OSError as e:
            raise TransportError(f"Could not launch {self.command[0]}: {e}") from e

    def stop(self) -> None:
        """Terminate the tool server subprocess."""
        process, self._process = self._process, None
        if process is None:
            return
        if process.stdin:
            try:
                process.stdin.close()
            except OSError:
                pass
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        if process.stdout:
            process.stdout.close()
        logger.info("Stdio transport stopped")

    def is_alive(self) -> bool:
        """Check if the subprocess is running."""
        return self._process is not None and self._process.poll() is None

    def _write(self, payload: str) -> None:
        if not self.is_alive():
            raise TransportError("Transport not running. Call start() first.")
        try:
            self._process.stdin.write(payload + "\n")
            self._process.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            raise TransportError(f"Tool server stdin closed: {e}") from e

    def notify(self, notification: JsonRpcNotification) -> None:
        self._write(notification.to_json())

    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Send JSON-RPC request via stdin, read its response from stdout."""
        self._write(request.to_json())

        while True:
            try:
                line = self._process.stdout.readline()
            except (OSError, ValueError) as e:
                # UnicodeDecodeError is a ValueError
                raise TransportError(f"Could not read from tool server: {e}") from e
            if not line:
                code = self._process.poll()
                raise TransportError(f"Tool server process exited (code {code})")
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring non-JSON output from tool server: {line[:200]}")
                continue
            response = _match_reply(message, request.id)
            if response is not None:
                return response


def iter_sse_events(lines: Iterator[str]) -> Iterator[tuple[str, str]]:
    """
    Group event-stream lines into (event, data) pairs.

    Events without an explicit type are reported as "message". Comment
    lines (leading ':') are skipped.
    """
    event = "message"
    data: list[str] = []
    for line in lines:
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        key, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if key == "event":
            event = value
        elif key == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)


class _HttpTransport(Transport):
    """Shared httpx client handling for the HTTP-based transports."""

    def __init__(self, url: str, timeout: float = 30.0, client: httpx.Client | None = None):
        super().__init__()
        self.url = url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._open = False

    def _ensure_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def _close_client(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def is_alive(self) -> bool:
        return self._open

    def _require_open(self) -> httpx.Client:
        if not self._open or self._client is None:
            raise TransportError("Transport not running. Call start() first.")
        return self._client


class StreamableHttpTransport(_HttpTransport):
    """
    JSON-RPC over streamable HTTP.

    Every message is POSTed to the same URL. The server answers a request
    either with a JSON body or with an event stream that eventually
    carries the response. A session id handed out on the first reply is
    echoed on every later request and released on stop().
    """

    def __init__(self, url: str, timeout: float = 30.0, client: httpx.Client | None = None):
        super().__init__(url, timeout, client)
        self.session_id: str | None = None

    def start(self) -> None:
        logger.info(f"Opening streamable HTTP transport: {self.url}")
        self._ensure_client()
        self._open = True

    def stop(self) -> None:
        if not self._open:
            self._close_client()
            return
        self._open = False
        try:
            if self.session_id and self._client is not None:
                try:
                    self._client.delete(self.url, headers={SESSION_HEADER: self.session_id})
                except httpx.HTTPError as e:
                    logger.warning(f"Could not release session at {self.url}: {e}")
        finally:
            self.session_id = None
            self._close_client()
            logger.info("Streamable HTTP transport stopped")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    def _remember_session(self, response: httpx.Response) -> None:
        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self.session_id = session_id

    def notify(self, notification: JsonRpcNotification) -> None:
        client = self._require_open()
        try:
            response = client.post(self.url, content=notification.to_json(), headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"POST {self.url} failed: {e}") from e
        self._remember_session(response)

    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        client = self._require_open()
        http_request = client.build_request(
            "POST", self.url, content=request.to_json(), headers=self._headers()
        )
        try:
            response = client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"POST {self.url} failed: {e}") from e

        try:
            if response.is_error:
                response.read()
                raise TransportError(
                    f"POST {self.url} returned HTTP {response.status_code}: {response.text[:200]}"
                )
            self._remember_session(response)
            content_type = response.headers.get("content-type", "")
            if content_type.startswith("text/event-stream"):
                return self._read_event_stream(response, request.id)
            return self._read_json(response, request.id)
        except httpx.HTTPError as e:
            raise TransportError(f"Reading reply from {self.url} failed: {e}") from e
        finally:
            response.close()

    def _read_json(self, response: httpx.Response, request_id: int | str) -> JsonRpcResponse:
        response.read()
        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {self.url}: {e}") from e
        # A batch reply is a list; pick ours out of it.
        messages = payload if isinstance(payload, list) else [payload]
        for message in messages:
            reply = _match_reply(message, request_id)
            if reply is not None:
                return reply
        raise TransportError(f"No response for request {request_id} from {self.url}")

    def _read_event_stream(self, response: httpx.Response, request_id: int | str) -> JsonRpcResponse:
        for event, data in iter_sse_events(response.iter_lines()):
            if event != "message":
                continue
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring non-JSON event data: {data[:200]}")
                continue
            reply = _match_reply(message, request_id)
            if reply is not None:
                return reply
        raise TransportError(f"Event stream from {self.url} ended before a response arrived")


class SseTransport(_HttpTransport):
    """
    JSON-RPC over a server-sent event stream.

    start() opens a GET stream and waits for the "endpoint" event, which
    names where messages should be POSTed. Replies come back on the
    stream as "message" events.
    """

    def __init__(self, url: str, timeout: float = 30.0, client: httpx.Client | None = None):
        super().__init__(url, timeout, client)
        self.endpoint: str | None = None
        self._stream: httpx.Response | None = None
        self._events: Iterator[tuple[str, str]] | None = None

    def start(self) -> None:
        logger.info(f"Opening event-stream transport: {self.url}")
        client = self._ensure_client()
        request = client.build_request("GET", self.url, headers={"Accept": "text/event-stream"})
        try:
            self._stream = client.send(request, stream=True)
            self._stream.raise_for_status()
            self._events = iter_sse_events(self._stream.iter_lines())
            for event, data in self._events:
                if event == "endpoint":
                    self.endpoint = urljoin(self.url, data.strip())
                    break
        except httpx.HTTPError as e:
            self._teardown()
            raise TransportError(f"GET {self.url} failed: {e}") from e

        if self.endpoint is None:
            self._teardown()
            raise TransportError(f"Event stream from {self.url} closed before announcing an endpoint")
        self._open = True
        logger.debug(f"Event-stream endpoint: {self.endpoint}")

    def _teardown(self) -> None:
        stream, self._stream = self._stream, None
        self._events = None
        self.endpoint = None
        try:
            if stream is not None:
                stream.close()
        finally:
            self._close_client()

    def stop(self) -> None:
        was_open, self._open = self._open, False
        self._teardown()
        if was_open:
            logger.info("Event-stream transport stopped")

    def _post(self, payload: str) -> None:
        client = self._require_open()
        try:
            response = client.post(
                self.endpoint, content=payload, headers={"Content-Type": "application/json"}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"POST {self.endpoint} failed: {e}") from e

    def notify(self, notification: JsonRpcNotification) -> None:
        self._post(notification.to_json())

    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        self._post(request.to_json())
        try:
            for event, data in self._events:
                if event != "message":
                    continue
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring non-JSON event data: {data[:200]}")
                    continue
                reply = _match_reply(message, request.id)
                if reply is not None:
                    return reply
        except httpx.HTTPError as e:
            self._close_dead_stream()
            raise TransportError(f"Event stream from {self.url} failed: {e}") from e
        self._close_dead_stream()
        raise TransportError(f"Event stream from {self.url} closed before a response arrived")

    def _close_dead_stream(self) -> None:
        # Replies only ever arrive on the stream, so without it the binding is unusable.
        self._open = False
        self._teardown()
        logger.warning(f"Event stream from {self.url} ended; transport closed")


def _stdio(config: ProviderConfig) -> Transport:
    return StdioTransport.from_command_line(config.target, config.env)


def _sse(config: ProviderConfig) -> Transport:
    return SseTransport(config.target, timeout=config.timeout)


def _streamable_http(config: ProviderConfig) -> Transport:
    return StreamableHttpTransport(config.target, timeout=config.timeout)


TRANSPORT_FACTORIES = {
    TransportKind.SUBPROCESS: _stdio,
    TransportKind.SSE: _sse,
    TransportKind.STREAMABLE_HTTP: _streamable_http,
}


def create_transport(config: ProviderConfig) -> Transport:
    """Build the (unstarted) transport a provider config asks for."""
    return TRANSPORT_FACTORIES[config.transport](config)
