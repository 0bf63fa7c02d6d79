# Custom defined Kraken specific exceptions
class KrakenError(Exception):
    """Base class for other exceptions"""
    pass

class KrakenConfigError(KrakenError):
    """Raise when credentials or precision metadata are missing or malformed"""
    pass

class KrakenNetworkError(KrakenError):
    """Raise when the HTTP transport fails (connection, timeout, TLS)"""
    pass

class KrakenProtocolError(KrakenError):
    """Raise when the server response cannot be parsed as an API envelope"""
    pass

class KrakenResponseError(KrakenError):
    """Raise when the Kraken API returns a non-empty error list"""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]
