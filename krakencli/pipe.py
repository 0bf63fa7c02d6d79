from sqlalchemy import Float, DateTime, Integer
from progress.bar import Bar
import sqlalchemy
import datetime as dt
from krakencli.client import Client, OHLC_INTERVALS
from krakencli.utils._helpers import _to_unix
import logging

##############################################################################################################
# Data pipeline connecting Kraken historic OHLC data (acquired via API) to SQL db through SQLAlchemy engine. #
##############################################################################################################

def _table_name(pair:str) -> str:
    """Generate SQL friendly name (i.e., adjust XBT/USD -> xbtusd)"""
    return pair.replace("/", "").replace("-", "").lower()


def pipeline(
    pairs:str or list, engine:sqlalchemy.engine, start:int or str or dt.datetime=None,
    interval:int=1, pages:int=1, chunk_size:int=500, schema:str=None,
    if_exists:str="append", progress_bar:bool=True, client:Client=None,
) -> None:
    """Data acquisition pipeline from Kraken OHLC API call -> SQL database.

    Leverage `pandas`, `sqlalchemy`, and `krakencli.client` to obtain, format,
    and catalogue OHLC data in a permanent database.

    Notes
    -----
        * Kraken serves at most 720 bars per call and only the most recent 720
        bars of any interval, whatever `start` is set to.
        * Each page starts at the `last` cursor returned by the previous page.
        Bars already written during the run are not written twice.

    Parameters
    ----------
    pairs : str or list
        Pair or list of pairs to call Kraken API for OHLC data (e.g., XXBTZUSD).
    engine : sqlalchemy.engine
        SQLAlchemy engine. For further information about engine objects review the
        `sqlalchemy.create_engine` documentation.
    start : int or str or datetime.datetime
        (Optional) Only acquire bars newer than `start`. Accepts a unix epoch,
        datetime, or string (e.g., YYYY-MM-DD or YYYY-MM-DD HH:MM:SS).
    interval : int
        (Optional) OHLC bar size in minutes. Default=1. Options: 1, 5, 15, 30,
        60, 240, 1440, 10080, 21600
    pages : int
        (Optional) Maximum number of API calls per pair. Default=1.
    chunk_size : int
        (Optional) Chunksize for use by `pandas.to_sql`.
    schema : str
        (Optional) SQL schema in which to store acquired OHLC data. Default=None.
        SQLite databases may not use schema argument.
    if_exists : str
        (Optional) Control the pipelines behavior if a table already exists in the
        defined database/schema. Default=`append`. Options: `fail`, `replace`, `append`.
        Only the first page of each pair honours `fail`/`replace`; later pages append.
    progress_bar : bool
        (Optional) Displays a loading bar and timer for each pair queried.
        Default=True
    client : krakencli.client.Client
        (Optional) Client used to query the API. A public client is created if
        not provided.

    See Also
    --------
        `krakencli.client.Client.ohlc`
    """
    # Light error handling to ensure parameter entry is correct
    if pages <= 0:
        raise ValueError("`pages` must be greater than 0")
    if interval not in OHLC_INTERVALS:
        raise ValueError(f"Param 'interval' must be one of {OHLC_INTERVALS}")
    if if_exists not in ("fail", "replace", "append"):
        raise ValueError("Param 'if_exists' must be one of `fail`, `replace`, `append`")

    client = client or Client()

    if isinstance(pairs, str):
        pairs = [pairs]
    since = _to_unix(start) if start is not None else None

    logging.info("Initializing data acquisition . . .")

    for pair in pairs:
        if progress_bar:
            bar = Bar(
                f"Processing {pair} ...",
                max=pages,
                suffix='%(percent)d%% Elapsed Time: %(elapsed)ds'
            )
        table_name = _table_name(pair)
        cursor = since
        mode = if_exists
        written = None
        try:
            for _ in range(pages):
                df, last = client.ohlc(pair, interval=interval, since=cursor)
                if written is not None:
                    df = df[df.index > written]
                if df.empty:
                    logging.info(f"No new bars returned for {pair}. Either incorrect pair or no more data.")
                    break
                df.to_sql(
                    table_name,         # Table in schema
                    engine,             # SQLAlchemy engine
                    schema=schema,      # Schema to write data to
                    if_exists=mode,
                    index=True,
                    chunksize=chunk_size,
                    dtype={
                        "time": DateTime,
                        "open": Float,
                        "high": Float,
                        "low": Float,
                        "close": Float,
                        "vwap": Float,
                        "volume": Float,
                        "count": Integer,
                    },
                )
                mode = "append"
                written = df.index.max()
                if progress_bar:
                    bar.next()
                if cursor is not None and last <= cursor:
                    break
                cursor = last
        except sqlalchemy.exc.OperationalError:
            logging.error(f"Database error while writing {pair}. Skipping pair.")
        if progress_bar:
            bar.finish()

    logging.info("Query complete. Closing pipeline.")
