from krakencli.client import Client, BaseClient, encode, sign
from krakencli.utils._helpers import format_decimal, load_api_key
from krakencli.utils._exceptions import (
    KrakenError,
    KrakenConfigError,
    KrakenNetworkError,
    KrakenProtocolError,
    KrakenResponseError,
)
