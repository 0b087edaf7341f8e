"""Errors raised while relaying requests to upstream services.

Each error carries the HTTP status and message the gateway answers with.
"""


class GatewayError(Exception):
    status_code: int = 500
    message: str = "Internal Server Error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class RouteNotFound(GatewayError):
    """No configured prefix matches the request path."""

    status_code = 404
    message = "Not Found"


class UpstreamUnreachable(GatewayError):
    """Network failure or timeout while contacting an upstream."""

    message = "Upstream unreachable"


class UpstreamProtocolViolation(GatewayError):
    """An upstream 401 came without a usable Bearer challenge."""

    message = "Upstream returned an invalid authentication challenge"


class AuthDiscoveryFailure(GatewayError):
    """The token realm of an upstream could not be discovered."""

    message = "Unable to discover upstream token endpoint"
