import threading
from krakencli.utils._exceptions import KrakenConfigError


class PrecisionTable(object):
    """Per-pair price and lot decimal counts sourced from the AssetPairs endpoint

    Both mappings are rebuilt off to the side on `update` and swapped in
    together under a lock, so readers never observe a half refreshed table.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._price = {}
        self._lot = {}

    def update(self, pairs:dict) -> None:
        """Replace the table from an AssetPairs result keyed by pair name"""
        price, lot = {}, {}
        for pair, detail in pairs.items():
            price[pair] = int(detail["pair_decimals"])
            lot[pair] = int(detail["lot_decimals"])
        with self._lock:
            self._price, self._lot = price, lot

    def _lookup(self, table, pair, kind):
        try:
            return table[pair]
        except KeyError:
            raise KrakenConfigError(
                f"No {kind} precision for {pair}. Call `set_decimals` or check the pair name."
            ) from None

    def price_decimals(self, pair:str) -> int:
        with self._lock:
            table = self._price
        return self._lookup(table, pair, "price")

    def lot_decimals(self, pair:str) -> int:
        with self._lock:
            table = self._lot
        return self._lookup(table, pair, "lot")

    def pairs(self) -> list:
        with self._lock:
            return sorted(self._lot)

    def __contains__(self, pair):
        with self._lock:
            return pair in self._lot

    def __len__(self):
        with self._lock:
            return len(self._lot)
