import time
import requests
import base64, binascii, hashlib, hmac
import logging
import functools
import threading
import numpy as np
import pandas as pd
import datetime as dt
from collections import namedtuple
from krakencli.utils._helpers import format_decimal
from krakencli.utils._helpers import load_api_key
from krakencli.utils._helpers import _bool_str, _join_ids, _to_unix
from krakencli.utils._precision import PrecisionTable
from krakencli.utils._exceptions import (
    KrakenConfigError,
    KrakenNetworkError,
    KrakenProtocolError,
    KrakenResponseError,
)


OrderBook = namedtuple("OrderBook", ("pair", "asks", "bids"))

OHLC_INTERVALS = (1, 5, 15, 30, 60, 240, 1440, 10080, 21600)

# Keys set by `Client.order` itself, plus the per-request nonce
ORDER_PARAMS = frozenset(("nonce", "pair", "type", "ordertype", "volume", "price", "userref"))


def _decode_secret(api_secret) -> bytes:
    """Decode a base64 API secret, failing fast on malformed input"""
    try:
        key = base64.b64decode(api_secret, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise KrakenConfigError("API secret is not valid base64") from e
    if not key:
        raise KrakenConfigError("API secret is empty")
    return key


def encode(data:dict) -> str:
    """Serialize POST data to the body that is both hashed and transmitted

    Parameters are joined as ``key=value`` pairs with ``&`` in insertion order.
    Keys and values are not percent-encoded, so values containing ``&`` or
    ``=`` will corrupt the body; callers must pass pre-encoded values.
    """
    return "&".join([f"{key}={data[key]}" for key in data])


def sign(path:str, data:dict, nonce:str, secret) -> str:
    """Compute the API-Sign header for a private request

    ``base64(HMAC-SHA512(b64decode(secret), path + SHA256(nonce + encode(data))))``

    Parameters
    ----------
    path : str
        URL path of the request including the version segment, e.g. ``/0/private/Balance``.
    data : dict
        POST parameters, including the nonce.
    nonce : str
        Nonce sent in `data`.
    secret : str or bytes
        Base64 encoded API secret.
    """
    return _signature(path, encode(data), nonce, _decode_secret(secret))


def _signature(path, body, nonce, key) -> str:
    digest = hashlib.sha256((nonce + body).encode("utf-8")).digest()
    message = path.encode("utf-8") + digest
    return base64.b64encode(hmac.new(key, message, hashlib.sha512).digest()).decode()


class BaseClient(object):

    REST_API_URL = "https://api.kraken.com"
    API_VERSION = "0"
    TIMEOUT = 10

    def __init__(self, api_key=None, api_secret=None, api_url=None, api_version=None, timeout=None):

        self.logger = logging.getLogger(__name__)

        self._api_key = api_key
        self._api_secret = api_secret
        self._secret_key = _decode_secret(api_secret) if api_secret is not None else None

        self.API_URL = (api_url or self.REST_API_URL).rstrip("/")
        if api_version is not None:
            self.API_VERSION = str(api_version)
        if timeout is not None:
            if timeout <= 0:
                raise KrakenConfigError("Request timeout must be a positive number of seconds")
            self.TIMEOUT = timeout

        self.precision = PrecisionTable()

        self._nonce_lock = threading.Lock()
        self._last_nonce = 0

        self.session = self._session()

    @property
    def api_key(self):
        return self._api_key

    @property
    def api_secret(self):
        return self._api_secret

    def _session(self) -> requests.sessions.Session:
        session = requests.Session()
        headers = {
            "Accept": "application/json",
            "User-Agent": "kraken-cli",
        }
        session.headers.update(headers)
        # Shim to add default timeout value to get/post requests
        session.request = functools.partial(session.request, timeout=self.TIMEOUT)
        return session

    def _nonce(self) -> str:
        """Millisecond unix time, bumped past the last issued nonce when the clock stalls"""
        with self._nonce_lock:
            nonce = max(int(time.time() * 1000), self._last_nonce + 1)
            self._last_nonce = nonce
        return str(nonce)

    def _post_string(self, data:dict) -> str:
        """Construct canonical POST body for signing and transmission"""
        return encode(data)

    def _generate_signature(self, path, body, nonce) -> str:
        """Generate unique signature for trade authorization"""
        return _signature(path, body, nonce, self._secret_key)

    def _create_path(self, path):
        """Create path with endpoint and api version"""
        return f"/{self.API_VERSION}/{path}"

    def _create_uri(self, path):
        """Convert path to URI via API URL and full path"""
        return f"{self.API_URL}{path}"

    def _request(self, method, path, signed=False, data=None):
        """Construct final get/post request and unwrap the response envelope"""
        full_path = self._create_path(path)
        uri = self._create_uri(full_path)

        if signed:
            if not self._api_key or self._secret_key is None:
                raise KrakenConfigError(f"API key and secret are required for {full_path}")
            if data and "nonce" in data:
                raise ValueError("`nonce` is drawn per request and may not be supplied")
            nonce = self._nonce()
            data = {"nonce": nonce, **(data or {})}
            body = self._post_string(data)
            headers = {
                "API-Key": self._api_key,
                "API-Sign": self._generate_signature(full_path, body, nonce),
                "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
            }
            kwargs = {"data": body.encode("utf-8"), "headers": headers}
        else:
            kwargs = {"params": data or None}

        self.logger.debug(f"{method.upper()} {full_path}")
        try:
            response = self.session.request(method, uri, **kwargs)
        except requests.exceptions.Timeout as e:
            raise KrakenNetworkError(f"Request to {full_path} timed out") from e
        except requests.exceptions.RequestException as e:
            raise KrakenNetworkError(f"Request to {full_path} failed: {e}") from e

        return self._handle_response(response, full_path)

    def _handle_response(self, response, path=None):
        """Return the `result` of a response or raise on a reported error"""
        try:
            payload = response.json()
        except ValueError as e:
            raise KrakenProtocolError(
                f"Response Error Code: <{response.status_code}>. Body is not valid JSON"
            ) from e
        if not isinstance(payload, dict) or "error" not in payload:
            raise KrakenProtocolError(
                f"Response Error Code: <{response.status_code}>. Unexpected response body"
            )
        errors = payload["error"]
        if errors:
            # Only the first error is surfaced in the message; all are kept on the exception
            self.logger.info(f"{path} returned errors: {errors}")
            raise KrakenResponseError(str(errors[0]), errors)
        return payload.get("result")


class Client(BaseClient):

    """Kraken REST API wrapper -> https://docs.kraken.com/rest/

    Parameters
    ----------
    api_key : str, optional
        API key generated on kraken.com. If no API key is given, the user cannot
        access private account or trading endpoints, but can access all public
        market data endpoints.
    api_secret : str, optional
        Base64 encoded private key generated alongside the API key. A secret that
        is not valid base64 raises `KrakenConfigError` immediately.
    api_url : str, optional
        Override the API origin. Default is https://api.kraken.com.
    api_version : str or int, optional
        Override the API version path segment. Default is `0`.
    timeout : float, optional
        Request timeout in seconds. Default is 10.
    """

    def __init__(self, api_key=None, api_secret=None, api_url=None, api_version=None, timeout=None):

        BaseClient.__init__(self, api_key, api_secret, api_url, api_version, timeout)

    @classmethod
    def from_keyfile(cls, filename, **kwargs):
        """Instantiate a client from a two line key file (key, then secret)"""
        api_key, api_secret = load_api_key(filename)
        return cls(api_key, api_secret, **kwargs)

    @staticmethod
    def _pair_result(resp:dict, pair:str):
        """Pick the entry for `pair`, allowing for Kraken's alternate pair names"""
        if pair in resp:
            return resp[pair]
        keys = [key for key in resp if key != "last"]
        if len(keys) == 1:
            return resp[keys[0]]
        raise KeyError(f"{pair} not found in response data")

    def set_decimals(self) -> None:
        """Refresh price and lot decimals for all pairs from the AssetPairs endpoint

        Trading functions format volume and price with these decimals, so this
        must be called once before placing orders. The table is never refreshed
        automatically.
        """
        pairs = self.asset_pairs()
        self.precision.update(pairs)
        self.logger.info(f"Loaded decimals for {len(pairs)} pairs")

    def get_server_time(self, unix:bool=True) -> int or dt.datetime:
        """Return Kraken server time

        Parameters
        ----------
        unix : bool, optional
            If `unix=True` [default], return the time as a unix epoch in seconds.
            Else, return a timezone aware datetime object in UTC.
        """
        resp = self._request("get", "public/Time")
        unixtime = resp["unixtime"]
        if not unix:
            return dt.datetime.fromtimestamp(unixtime, tz=dt.timezone.utc)
        return unixtime

    def assets(self, asset:str or list=None) -> dict:
        """Return asset information, optionally restricted to one or more assets"""
        data = {"asset": _join_ids(asset, limit=100)} if asset else None
        return self._request("get", "public/Assets", data=data)

    def asset_pairs(self, pair:str or list=None) -> dict:
        """Return tradable asset pair details keyed by pair name"""
        data = {"pair": _join_ids(pair, limit=100)} if pair else None
        return self._request("get", "public/AssetPairs", data=data)

    def ticker(self, pair:str) -> dict:
        """Return ticker information for a single pair (e.g., XXBTZEUR)"""
        resp = self._request("get", "public/Ticker", data={"pair": pair})
        return self._pair_result(resp, pair)

    def ohlc(self, pair:str, interval:int=1, since:int=None) -> tuple:
        """Query OHLC data for a pair

        Parameters
        ----------
        pair : str
            Asset pair, e.g. XXBTZEUR
        interval : int, optional
            Bar size in minutes. Options: `[1, 5, 15, 30, 60, 240, 1440, 10080, 21600]`.
            Default=1
        since : int or str or datetime.datetime, optional
            Only return bars newer than this time identifier.

        Returns
        -------
        tuple
            pandas DataFrame indexed to UTC time with columns open, high, low,
            close, vwap, volume, count and the `last` cursor as int for use as
            the next `since`.
        """
        if interval not in OHLC_INTERVALS:
            raise ValueError(f"Interval must be one of {OHLC_INTERVALS}")
        data = {"pair": pair, "interval": str(interval)}
        if since is not None:
            data["since"] = str(_to_unix(since))
        resp = self._request("get", "public/OHLC", data=data)
        columns = ["time", "open", "high", "low", "close", "vwap", "volume", "count"]
        df = pd.DataFrame(self._pair_result(resp, pair), columns=columns)
        df["time"] = pd.to_datetime(df["time"], unit="s", origin="unix")
        df = df.set_index("time")
        df[columns[1:-1]] = df[columns[1:-1]].astype(float)
        df["count"] = df["count"].astype(int)
        return df, int(resp["last"])

    def order_book(self, pair:str, count:int=None, format:str="df") -> pd.DataFrame or tuple or OrderBook:
        """Query the order book for a pair

        Parameters
        ----------
        pair : str
            Asset pair, e.g. XXBTZEUR
        count : int, optional
            Maximum number of asks and bids. The exchange caps this at 500.
        format : str, optional
            * `df` and `dataframe`: DataFrame with `Asks` and `Bids` column groups,
              each holding price, volume and timestamp. Sides of unequal depth are
              padded with NaN.
            * `raw`: tuple of the unaltered `(asks, bids)` lists.
            * `np` and `numpy`: `OrderBook` namedtuple with [N x 3] float arrays.
        """
        data = {"pair": pair}
        if count is not None:
            data["count"] = str(count)
        resp = self._pair_result(self._request("get", "public/Depth", data=data), pair)
        if format == "raw":
            return resp["asks"], resp["bids"]
        asks = np.array(resp["asks"], dtype=float).reshape(-1, 3)
        bids = np.array(resp["bids"], dtype=float).reshape(-1, 3)
        if format == "np" or format == "numpy":
            return OrderBook(pair, asks, bids)
        if format == "df" or format == "dataframe":
            columns = ["price", "volume", "timestamp"]
            df = pd.concat(
                [pd.DataFrame(asks, columns=columns), pd.DataFrame(bids, columns=columns)],
                keys=["Asks", "Bids"], axis=1,
            )
            df.index = df.index + 1
            df.index.name = "depth"
            return df
        raise ValueError(f"Unknown format: {format}")

    def trades(self, pair:str, since:int=None) -> tuple:
        """Return recent trades for a pair as a DataFrame and the `last` cursor"""
        data = {"pair": pair}
        if since is not None:
            data["since"] = str(since)
        resp = self._request("get", "public/Trades", data=data)
        rows = self._pair_result(resp, pair)
        columns = ["price", "volume", "time", "side", "ordertype", "misc", "trade_id"]
        width = len(rows[0]) if rows else 6
        df = pd.DataFrame(rows, columns=columns[:width])
        df[["price", "volume"]] = df[["price", "volume"]].astype(float)
        df["time"] = pd.to_datetime(df["time"].astype(float), unit="s", origin="unix")
        df["side"] = df["side"].map({"b": "buy", "s": "sell"})
        df["ordertype"] = df["ordertype"].map({"l": "limit", "m": "market"})
        return df.set_index("time"), int(resp["last"])

    def spread(self, pair:str, since:int=None) -> tuple:
        """Return recent best bid/ask spreads for a pair and the `last` cursor"""
        data = {"pair": pair}
        if since is not None:
            data["since"] = str(since)
        resp = self._request("get", "public/Spread", data=data)
        df = pd.DataFrame(self._pair_result(resp, pair), columns=["time", "bid", "ask"])
        df["time"] = pd.to_datetime(df["time"], unit="s", origin="unix")
        df[["bid", "ask"]] = df[["bid", "ask"]].astype(float)
        return df.set_index("time"), int(resp["last"])

    def balance(self) -> dict:
        """Return account balances keyed by asset name"""
        return self._request("post", "private/Balance", signed=True)

    def trade_balance(self, asset:str=None) -> dict:
        """Return trade balance summary, optionally denominated in `asset` (default ZUSD)"""
        data = {"asset": asset} if asset else None
        return self._request("post", "private/TradeBalance", signed=True, data=data)

    def open_orders(self, trades:bool=False, userref:int=None) -> dict:
        """Return open orders

        Parameters
        ----------
        trades : bool, optional
            Include trades related to each order.
        userref : int, optional
            Restrict results to orders placed with this user reference.
        """
        data = {"trades": _bool_str(trades)}
        if userref is not None:
            data["userref"] = str(userref)
        return self._request("post", "private/OpenOrders", signed=True, data=data)

    def closed_orders(
        self, trades:bool=False, userref:int=None, start:int or str or dt.datetime=None,
        end:int or str or dt.datetime=None,
    ) -> dict:
        """Return closed orders

        Parameters
        ----------
        trades : bool, optional
            Include trades related to each order.
        userref : int, optional
            Restrict results to orders placed with this user reference.
        start : int or str or datetime.datetime, optional
            Beginning of the query range. Unix epoch, datetime, or a string of
            the form "YYYY-MM-DD" or "YYYY-MM-DD HH:MM:SS" (UTC).
        end : int or str or datetime.datetime, optional
            End of the query range. Same formats as `start`.

        Returns
        -------
        dict
            `closed` holds the closed orders keyed by txid, `count` the number
            of matching orders.
        """
        data = {"trades": _bool_str(trades)}
        if userref is not None:
            data["userref"] = str(userref)
        if start is not None:
            data["start"] = str(_to_unix(start))
        if end is not None:
            data["end"] = str(_to_unix(end))
        return self._request("post", "private/ClosedOrders", signed=True, data=data)

    def query_orders(self, txid:str or list, trades:bool=False, userref:int=None) -> dict:
        """Return order details for up to 20 txids"""
        data = {"txid": _join_ids(txid), "trades": _bool_str(trades)}
        if userref is not None:
            data["userref"] = str(userref)
        return self._request("post", "private/QueryOrders", signed=True, data=data)

    def trades_history(self) -> dict:
        """Return the user's trade history"""
        return self._request("post", "private/TradesHistory", signed=True)

    def query_trades(self, txid:str or list, trades:bool=False) -> dict:
        """Return trade details for up to 20 txids"""
        data = {"txid": _join_ids(txid), "trades": _bool_str(trades)}
        return self._request("post", "private/QueryTrades", signed=True, data=data)

    def open_positions(self, txid:str or list=None, docalcs:bool=False) -> dict:
        """Return open margin positions, optionally with profit/loss calculations"""
        data = {}
        if txid:
            data["txid"] = _join_ids(txid, limit=100)
        data["docalcs"] = _bool_str(docalcs)
        return self._request("post", "private/OpenPositions", signed=True, data=data)

    def ledgers(self) -> dict:
        """Return ledger entries"""
        return self._request("post", "private/Ledgers", signed=True)

    def query_ledgers(self, id:str or list) -> dict:
        """Return ledger entries for up to 20 ledger IDs"""
        data = {"id": _join_ids(id)}
        return self._request("post", "private/QueryLedgers", signed=True, data=data)

    def trade_volume(self) -> dict:
        """Return 30 day trade volume and fee tier"""
        return self._request("post", "private/TradeVolume", signed=True)

    def order(
        self, pair:str, side:str, volume:float, ordertype:str="market", price:float=None,
        userref:int=None, **kwargs,
    ) -> dict:
        """Place an order

        Volume and price are rendered with the pair's lot and price decimals
        before the request is signed, so `set_decimals` must have been called.
        Unknown pairs raise `KrakenConfigError` before any request is made.

        Parameters
        ----------
        pair : str
            Asset pair to trade, e.g. XXBTZEUR
        side : str
            `buy` or `sell`
        volume : float
            Order size in base currency.
        ordertype : str, optional
            Exchange order type, e.g. `market` [default], `limit`, `stop-loss`.
        price : float, optional
            Limit price. Required when `ordertype="limit"`.
        userref : int, optional
            User reference attached to the order for later queries.
        **kwargs
            Additional parameters passed through unchanged (e.g., `oflags`,
            `timeinforce`, `validate`). Booleans are sent as `true`/`false`.

        Returns
        -------
        dict
            `descr` holds the order description and `txid` the order IDs.
        """
        side = side.lower()
        if side not in ("buy", "sell"):
            raise ValueError(f"`side` must be `buy` or `sell`, not {side}")
        if ordertype == "limit" and price is None:
            raise ValueError("Limit orders must specify `price`")
        reserved = ORDER_PARAMS.intersection(kwargs)
        if reserved:
            raise ValueError(f"Parameters {sorted(reserved)} may not be passed as extra order parameters")
        data = {
            "pair": pair,
            "type": side,
            "ordertype": ordertype,
            "volume": format_decimal(volume, self.precision.lot_decimals(pair)),
        }
        if price is not None:
            data["price"] = format_decimal(price, self.precision.price_decimals(pair))
        if userref is not None:
            data["userref"] = str(userref)
        for key, value in kwargs.items():
            data[key] = _bool_str(value) if isinstance(value, bool) else str(value)
        self.logger.info(f"Placing {side} {ordertype} order for {data['volume']} {pair}")
        return self._request("post", "private/AddOrder", signed=True, data=data)

    def buy_market(self, pair:str, volume:float, userref:int=None) -> dict:
        """Buy `volume` of `pair` at market price"""
        return self.order(pair, "buy", volume, userref=userref)

    def sell_market(self, pair:str, volume:float, userref:int=None) -> dict:
        """Sell `volume` of `pair` at market price"""
        return self.order(pair, "sell", volume, userref=userref)

    def buy_limit(self, pair:str, volume:float, price:float, userref:int=None) -> dict:
        """Buy `volume` of `pair` at limit `price`"""
        return self.order(pair, "buy", volume, ordertype="limit", price=price, userref=userref)

    def sell_limit(self, pair:str, volume:float, price:float, userref:int=None) -> dict:
        """Sell `volume` of `pair` at limit `price`"""
        return self.order(pair, "sell", volume, ordertype="limit", price=price, userref=userref)

    def cancel_order(self, txid:str) -> dict:
        """Cancel an open order by txid

        Returns
        -------
        dict
            `count` holds the number of orders cancelled and `pending` whether
            cancellation is pending.
        """
        if not txid:
            raise ValueError("Must specify `txid`")
        return self._request("post", "private/CancelOrder", signed=True, data={"txid": txid})
