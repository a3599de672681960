"""Minimal Copilot runtime double used by the subprocess integration tests.

Speaks Content-Length framed JSON-RPC over stdin/stdout, or over a TCP socket
when launched with ``--port``. Accepts and ignores the other runtime flags.

Methods:
    ping               -> pong with the protocol version
    session.create     -> a new session id
    session.send       -> message id, then a tool.call round trip for prompts
                          starting with "tool:", then assistant.message + session.idle
    session.destroy    -> {}
    env.get            -> value of an environment variable
    argv.get           -> the command line this process was started with
    crash              -> exits with code 3 without answering
"""

from __future__ import annotations

import json
import os
import socket
import sys
import time
from typing import Any, BinaryIO, Dict, Optional

PROTOCOL_VERSION = 2


def read_message(stream: BinaryIO) -> Optional[Dict[str, Any]]:
    length = None
    while True:
        line = stream.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            break
        name, _, value = line.decode("ascii").partition(":")
        if name.strip().lower() == "content-length":
            length = int(value.strip())
    if length is None:
        return None
    return json.loads(stream.read(length))


def write_message(stream: BinaryIO, message: Dict[str, Any]) -> None:
    body = json.dumps(message).encode("utf-8")
    stream.write(b"Content-Length: %d\r\n\r\n" % len(body) + body)
    stream.flush()


class FakeRuntime:
    def __init__(self, inp: BinaryIO, out: BinaryIO) -> None:
        self.inp = inp
        self.out = out
        self.sessions = 0
        self.outbound = 0

    def notify(self, method: str, params: Dict[str, Any]) -> None:
        write_message(self.out, {"jsonrpc": "2.0", "method": method, "params": params})

    def emit(self, session_id: str, event_type: str, data: Dict[str, Any]) -> None:
        self.notify("session.event", {"sessionId": session_id, "event": {"type": event_type, "data": data}})

    def call_client(self, method: str, params: Dict[str, Any]) -> Any:
        self.outbound += 1
        request_id = f"rt-{self.outbound}"
        write_message(self.out, {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
        while True:
            message = read_message(self.inp)
            if message is None:
                sys.exit(0)
            if message.get("id") == request_id and "method" not in message:
                return message.get("result", message.get("error"))

    def handle(self, method: str, params: Dict[str, Any]) -> Any:
        if method == "ping":
            return {
                "message": f"pong: {params.get('message')}",
                "timestamp": time.time(),
                "protocolVersion": PROTOCOL_VERSION,
            }
        if method == "session.create":
            self.sessions += 1
            return {"sessionId": params.get("sessionId") or f"proc-session-{self.sessions}"}
        if method == "session.destroy":
            return {}
        if method == "env.get":
            return {"value": os.environ.get(params["name"])}
        if method == "argv.get":
            return {"argv": sys.argv[1:]}
        if method == "crash":
            self.out.flush()
            os._exit(3)
        raise LookupError(method)

    def run_turn(self, session_id: str, prompt: str) -> None:
        if prompt.startswith("tool:"):
            _, name, city = prompt.split(":", 2)
            reply = self.call_client(
                "tool.call",
                {"sessionId": session_id, "toolCallId": "tc-1", "toolName": name, "arguments": {"city": city}},
            )
            content = json.dumps(reply, sort_keys=True)
        else:
            content = f"echo: {prompt}"
        self.emit(session_id, "assistant.message", {"content": content})
        self.emit(session_id, "session.idle", {})

    def serve(self) -> None:
        while True:
            message = read_message(self.inp)
            if message is None:
                return
            if "id" not in message:
                continue
            method, params = message.get("method"), message.get("params") or {}
            if method == "session.send":
                write_message(self.out, {"jsonrpc": "2.0", "id": message["id"], "result": {"messageId": "m-1"}})
                self.run_turn(params["sessionId"], params["prompt"])
                continue
            try:
                result = self.handle(method, params)
            except LookupError:
                error = {"code": -32601, "message": f"Unknown method {method}"}
                write_message(self.out, {"jsonrpc": "2.0", "id": message["id"], "error": error})
                continue
            write_message(self.out, {"jsonrpc": "2.0", "id": message["id"], "result": result})


def main(argv: list) -> None:
    if "--port" in argv:
        port = int(argv[argv.index("--port") + 1])
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind(("127.0.0.1", port))
        server.listen(1)
        print(f"CLI server listening on port {server.getsockname()[1]}", flush=True)
        conn, _ = server.accept()
        stream = conn.makefile("rwb")
        FakeRuntime(stream, stream).serve()
        return
    FakeRuntime(sys.stdin.buffer, sys.stdout.buffer).serve()


if __name__ == "__main__":
    main(sys.argv[1:])
