"""Error taxonomy shared by the transport, dispatcher, and lifecycle layers."""


class SimulationError(Exception):
    """Base for all orchestrator errors."""

    pass


class TransportFailure(SimulationError):
    """Network-level failure (connection refused, timeout) after retries."""

    pass


class ApplicationError(SimulationError):
    """Backend answered with a well-formed error response."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Backend returned HTTP {status_code}: {body[:200]}")


class InvalidResponseFormat(SimulationError):
    """Decision text or payload did not match the action grammar."""

    def __init__(self, raw_response: str, reason: str):
        self.raw_response = raw_response
        self.reason = reason
        super().__init__(f"Invalid decision response: {reason}")


class CapacityExceeded(SimulationError):
    """Agent creation refused because the fleet is full."""

    pass


class DuplicateId(SimulationError):
    """Agent creation refused because the id is already taken."""

    pass


class UnknownAgent(SimulationError):
    """Operation referenced an agent id that is not registered."""

    pass


class UnknownLocation(SimulationError):
    """Move target is neither a known location nor a reachable agent."""

    pass


class UnknownAgentTarget(SimulationError):
    """Move/converse target agent is missing or out of range."""

    pass


class AlreadyInProgress(SimulationError):
    """A move or conversation is already active for the agent."""

    pass
