"""
Fake Mindsight API: token endpoint, GraphQL source list and metrics
ingest, all on one port. Handy for running the agent end to end.

    python -m mindsight_agent.mock.fake_api_server
    MINDSIGHT_CLIENT_ID=dev MINDSIGHT_CLIENT_SECRET=dev \\
    MINDSIGHT_API_SERVER=http://localhost:9180/ \\
    MINDSIGHT_AUTH_URL=http://localhost:9180/oauth/token/ mindsight-agent run
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, List, Optional

TOKEN = "fake-access-token"
TOKEN_PATH = "/oauth/token/"
QUERY_PATH = "/query"
METRICS_PATH = "/metricsin/"


@dataclass
class FakeAPIState:
    """Everything the fake server knows. Tests poke at this directly."""

    sources: List[Dict[str, Any]] = field(default_factory=list)
    client_id: str = "dev"
    client_secret: str = "dev"
    token: str = TOKEN
    expires_in: int = 86400
    pushed: List[Dict[str, Any]] = field(default_factory=list)
    token_requests: int = 0
    source_queries: int = 0
    # Non-zero forces the ingest endpoint to fail with this status
    push_status: int = 0
    graphql_errors: Optional[List[Dict[str, Any]]] = None


def make_handler(state: FakeAPIState):

    class _APIHandler(BaseHTTPRequestHandler):

        def _send_json(self, status: int, payload: Any):
            body = json.dumps(payload).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _read_json(self) -> Any:
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length) if length else b""
            try:
                return json.loads(raw or b"null")
            except ValueError:
                return None

        def _authorized(self) -> bool:
            return self.headers.get("Authorization") == "bearer " + state.token

        def do_POST(self):
            body = self._read_json()

            if self.path == TOKEN_PATH:
                state.token_requests += 1
                if (
                    not isinstance(body, dict)
                    or body.get("client_id") != state.client_id
                    or body.get("client_secret") != state.client_secret
                    or body.get("grant_type") != "client_credentials"
                ):
                    self._send_json(401, {"error": "access_denied", "error_description": "Unauthorized"})
                    return
                self._send_json(200, {
                    "access_token": state.token,
                    "expires_in": state.expires_in,
                    "token_type": "Bearer",
                })
                return

            if not self._authorized():
                self._send_json(401, {"error": "missing or invalid bearer token"})
                return

            if self.path == QUERY_PATH:
                state.source_queries += 1
                if state.graphql_errors:
                    self._send_json(200, {"data": None, "errors": state.graphql_errors})
                    return
                self._send_json(200, {"data": {"metricSources": list(state.sources)}})
                return

            if self.path == METRICS_PATH:
                if state.push_status:
                    self._send_json(state.push_status, {"error": "ingest unavailable"})
                    return
                state.pushed.append(body)
                self._send_json(200, {"accepted": True})
                return

            self._send_json(404, {"error": "not found"})

        def log_message(self, format, *args):
            pass  # Suppress request logging noise

    return _APIHandler


def run_fake_server(host: str = "127.0.0.1", port: int = 9180, state: Optional[FakeAPIState] = None):
    state = state or FakeAPIState(sources=[
        {"id": 1, "sourceURL": "http://127.0.0.1:9190", "query": "up"},
        {"id": 2, "sourceURL": "http://127.0.0.1:9190", "query": "rate(http_requests_total[5m])"},
    ])
    server = HTTPServer((host, port), make_handler(state))
    print(f"Fake Mindsight API running at http://{host}:{port}/")
    print("Press Ctrl+C to stop.\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    server.server_close()
    print(f"\nServer stopped. {len(state.pushed)} batches received.")


if __name__ == "__main__":
    run_fake_server()
