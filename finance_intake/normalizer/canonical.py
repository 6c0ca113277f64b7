"""Canonical merchant names keyed by their preprocessed variants."""

from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import Protocol

from .preprocess import preprocess_merchant_name

DEFAULT_CANONICAL_NAMES: dict[str, tuple[str, ...]] = {
    # Groceries
    "Loblaws": ("loblaws", "loblaw", "loblaws supermarket", "loblaw's"),
    "Sobeys": ("sobeys", "sobey", "sobeys supermarket"),
    "Metro": ("metro", "metro grocery", "metro groceries"),
    "No Frills": ("no frills", "nofrills"),
    "Fortinos": ("fortinos", "fortino"),
    "Zehrs": ("zehrs", "zehr", "zehrs markets"),
    "Real Canadian Superstore": ("real canadian superstore", "superstore", "rcss"),
    "Walmart": ("walmart", "wal mart", "walmart supercenter", "walmart supercentre", "wm supercenter"),
    "Costco": ("costco", "costco wholesale", "costco gas"),
    # Coffee
    "Tim Hortons": ("tim hortons", "tim horton", "tim horton's", "tims", "tim", "timmy", "timmy's", "timmies"),
    "Starbucks": ("starbucks", "starbucks coffee", "sbux"),
    "Second Cup": ("second cup", "second cup coffee"),
    "Joe's Coffee": ("joe's coffee", "joes coffee", "joe's coffee house"),
    # Fast food
    "McDonald's": ("mcdonalds", "mcdonald", "mcdonald's", "mcd", "mcds"),
    "Burger King": ("burger king", "bk"),
    "Wendy's": ("wendys", "wendy", "wendy's"),
    "A&W": ("a&w", "a & w", "a and w"),
    "Subway": ("subway", "subway sandwiches"),
    # Gas
    "Petro-Canada": ("petro canada", "petro can", "petro", "petrocan"),
    "Esso": ("esso", "esso gas"),
    "Shell": ("shell", "shell gas", "shell canada", "shell oil"),
    "Husky": ("husky", "husky energy"),
    "Pioneer": ("pioneer", "pioneer gas"),
    # Banks
    "CIBC": ("cibc", "cibc bank", "canadian imperial bank"),
    "TD Bank": ("td", "td bank", "td canada trust"),
    "RBC": ("rbc", "rbc bank", "royal bank", "royal bank of canada"),
    "BMO": ("bmo", "bmo bank", "bank of montreal"),
    "Scotiabank": ("scotiabank", "scotia", "bank of nova scotia"),
    # Telecom
    "Rogers": ("rogers", "rogers communications", "rogers wireless"),
    "Bell": ("bell", "bell canada", "bell mobility"),
    "Telus": ("telus", "telus communications", "telus mobility"),
    "Fido": ("fido", "fido solutions"),
    # Pharmacy
    "Shoppers Drug Mart": ("shoppers drug mart", "shoppers", "sdm"),
    "Rexall": ("rexall", "rexall pharmacy"),
    "Pharma Plus": ("pharma plus", "pharmaplus"),
    # Retail
    "Canadian Tire": ("canadian tire", "can tire", "ct"),
    "Dollarama": ("dollarama", "dollar store"),
    "Winners": ("winners", "tj maxx"),
    "Marshalls": ("marshalls",),
    # Online
    "Amazon": ("amazon", "amazon ca", "amazon com", "amzn mktp ca", "amzn mktp us", "amazon marketplace"),
    "Netflix": ("netflix", "netflix com"),
    "Spotify": ("spotify", "spotify premium"),
    # Transit
    "TTC": ("ttc", "toronto transit", "toronto transit commission"),
    "GO Transit": ("go transit", "go train", "go bus"),
    "Presto": ("presto", "presto card"),
    # Entertainment
    "Cineplex": ("cineplex", "cineplex odeon", "cineplex entertainment"),
    "LCBO": ("lcbo", "liquor control board"),
    "The Beer Store": ("beer store", "the beer store"),
    # Utilities
    "Toronto Hydro": ("toronto hydro",),
    "Hydro One": ("hydro one",),
    "Enbridge": ("enbridge", "enbridge gas"),
}


class CanonicalMap(Protocol):
    """Read-only lookup from preprocessed merchant text to a canonical name."""

    def get(self, key: str) -> str | None:
        """Return the canonical name for an exact preprocessed key, if any."""
        ...

    def keys(self) -> Iterable[str]:
        """Return every lookup key (used as fuzzy-match candidates)."""
        ...


class StaticCanonicalMap:
    """In-memory canonical map built from ``{canonical name: aliases}``.

    Each canonical name's own preprocessed form is also indexed, so feeding a canonical name back through the
    normalizer resolves to itself.
    """

    def __init__(self, names: Mapping[str, Iterable[str]] | None = None) -> None:
        """Build the alias index."""
        names = DEFAULT_CANONICAL_NAMES if names is None else names
        self._index: dict[str, str] = {}
        for canonical, aliases in names.items():
            for alias in aliases:
                self._index[preprocess_merchant_name(alias)] = canonical
        for canonical in names:
            self._index[preprocess_merchant_name(canonical)] = canonical

    def get(self, key: str) -> str | None:
        """Return the canonical name for ``key``."""
        return self._index.get(key)

    def keys(self) -> list[str]:
        """Return all indexed keys."""
        return list(self._index)

    def __len__(self) -> int:
        return len(self._index)


@lru_cache(maxsize=1)
def get_canonical_map() -> StaticCanonicalMap:
    """Return the shared default canonical map."""
    return StaticCanonicalMap()
