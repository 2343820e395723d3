"""Failure kinds raised by the gateway lifecycle manager and the proxy gate."""


class GatewayError(Exception):
    """Base class for every wrapper-side gateway failure."""


class NotConfigured(GatewayError):
    """No config file on disk; the caller should be sent to /setup."""

    def __init__(self, message: str = "Gateway cannot start: not configured"):
        super().__init__(message)


class GatewayNotReady(GatewayError):
    """The gateway spawned but never answered a readiness probe in time."""

    def __init__(self, message: str = "Gateway did not become ready in time"):
        super().__init__(message)


class SpawnError(GatewayError):
    """The OS refused to launch the gateway process."""


class ProxyError(GatewayError):
    """The gateway target could not be reached while forwarding."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code
