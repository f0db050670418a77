"""
Exception types. Every failure the agent knows about derives from
AgentError so the scheduler can tell expected tick failures apart
from programming errors in logs.
"""


class AgentError(Exception):
    """Base class for all agent errors."""


class ConfigError(AgentError):
    """Configuration is missing or invalid."""


class AuthError(AgentError):
    """An access token could not be obtained."""


class BackendConnectError(AgentError):
    """A query backend connection could not be built for an endpoint."""


class QueryError(AgentError):
    """A backend query failed or returned an unusable result."""


class CollectError(AgentError):
    """A source failed during collection. Wraps the underlying QueryError."""

    def __init__(self, query: str, endpoint: str, reason: str = ""):
        self.query = query
        self.endpoint = endpoint
        message = f"query: {query} url: {endpoint}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PushError(AgentError):
    """A flushed batch could not be delivered upstream."""

    def __init__(self, message: str, status_code: int = 0, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SourceQueryError(AgentError):
    """The upstream source list could not be fetched."""


class AgentInitError(AgentError):
    """Startup failed. The agent cannot do useful work and must exit."""
