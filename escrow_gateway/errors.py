class GatewayError(Exception):
    """Base class for everything the gateway raises on purpose."""


class TransportError(GatewayError):
    """The escrow API could not be reached."""


class AuthenticationError(GatewayError):
    """The escrow API answered 401; the cached tokens are no longer valid."""


class ApiError(GatewayError):
    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
