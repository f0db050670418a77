"""
Fake Prometheus query API for testing without a real Prometheus.

    python -m mindsight_agent.mock.fake_prometheus_server
    mindsight-agent query --url http://localhost:9190 'up'

Every query answers with a small instant vector. A few magic queries
exercise the error paths:

    empty      -> empty vector
    matrix     -> a range result instead of a vector
    bad_query  -> Prometheus-style 400 error body
    bad_labels -> a vector element whose label set is not an object
"""

from __future__ import annotations

import json
import math
import random
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

_rng = random.Random(42)
_tick = 0

SERIES_PER_QUERY = 2


def _vector_for(query: str, eval_time: float) -> list:
    global _tick
    _tick += 1
    result = []
    for i in range(SERIES_PER_QUERY):
        value = 0.5 + 0.4 * math.sin(_tick * 0.1 + i) + _rng.gauss(0, 0.02)
        result.append({
            "metric": {"__name__": "mindsight_fake", "query": query, "instance": f"node-{i}"},
            "value": [eval_time, f"{value:.4f}"],
        })
    return result


def build_response(query: str, eval_time: float):
    """Return (status_code, body_dict) for an instant query."""
    if query == "bad_query":
        return 400, {
            "status": "error",
            "errorType": "bad_data",
            "error": 'parse error at char 4: unexpected identifier "query"',
        }
    if query == "empty":
        return 200, {"status": "success", "data": {"resultType": "vector", "result": []}}
    if query == "bad_labels":
        return 200, {
            "status": "success",
            "data": {"resultType": "vector", "result": [{"metric": ["a"], "value": [eval_time, "1"]}]},
        }
    if query == "matrix":
        return 200, {
            "status": "success",
            "data": {
                "resultType": "matrix",
                "result": [{"metric": {}, "values": [[eval_time, "1"]]}],
            },
        }
    return 200, {
        "status": "success",
        "data": {"resultType": "vector", "result": _vector_for(query, eval_time)},
    }


class _QueryHandler(BaseHTTPRequestHandler):
    # Bumped on every query so tests can count hits
    query_count = 0

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != "/api/v1/query":
            self.send_response(404)
            self.end_headers()
            return

        params = parse_qs(parsed.query)
        query = params.get("query", [""])[0]
        try:
            eval_time = float(params.get("time", [time.time()])[0])
        except ValueError:
            eval_time = time.time()

        type(self).query_count += 1
        status, payload = build_response(query, eval_time)
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass  # Suppress request logging noise


def run_fake_server(host: str = "127.0.0.1", port: int = 9190):
    server = HTTPServer((host, port), _QueryHandler)
    print(f"Fake Prometheus query API running at http://{host}:{port}/api/v1/query")
    print("Press Ctrl+C to stop.\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    server.server_close()
    print("\nServer stopped.")


if __name__ == "__main__":
    run_fake_server()
