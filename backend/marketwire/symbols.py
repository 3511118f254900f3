"""Fixed instrument registry and upstream feed layout."""

from __future__ import annotations

from dataclasses import dataclass

from .models import Category, Instrument

EQUITIES: tuple[Instrument, ...] = tuple(
    Instrument(f"{ticker}.US", name, Category.EQUITY, f"{ticker}.US", ticker)
    for name, ticker in (
        ("Apple", "AAPL"),
        ("Microsoft", "MSFT"),
        ("Amazon", "AMZN"),
        ("Alphabet (Google)", "GOOGL"),
        ("Tesla", "TSLA"),
        ("Nvidia", "NVDA"),
        ("Meta Platforms", "META"),
        ("JPMorgan Chase", "JPM"),
        ("Visa", "V"),
        ("Coca-Cola", "KO"),
        ("Johnson & Johnson", "JNJ"),
        ("Walmart", "WMT"),
        ("Mastercard", "MA"),
        ("Pfizer", "PFE"),
        ("Netflix", "NFLX"),
    )
)

INDICES: tuple[Instrument, ...] = (
    Instrument("GSPC.INDX", "S&P 500", Category.INDEX, "GSPC.INDX", "^GSPC"),
    Instrument("NDX.INDX", "NASDAQ 100", Category.INDEX, "NDX.INDX", "^NDX"),
    Instrument("DJI.INDX", "Dow Jones", Category.INDEX, "DJI.INDX", "^DJI"),
    # Not on the US stream; chart endpoint only
    Instrument("^J200.JO", "JSE Top 40", Category.INDEX, None, "^J200.JO"),
)

FOREX: tuple[Instrument, ...] = tuple(
    Instrument(pair.replace("/", ""), pair, Category.FOREX, f"{pair.replace('/', '')}.FOREX",
               f"{pair.replace('/', '')}=X")
    for pair in (
        "EUR/USD",
        "GBP/USD",
        "USD/JPY",
        "USD/ZAR",
        "EUR/ZAR",
        "GBP/ZAR",
        "AUD/USD",
        "USD/CHF",
    )
)

COMMODITIES: tuple[Instrument, ...] = (
    # Spot metals stream on the forex feed; series come from front-month futures
    Instrument("XAUUSD", "Gold", Category.COMMODITY, "XAUUSD.FOREX", "GC=F"),
    Instrument("XAGUSD", "Silver", Category.COMMODITY, "XAGUSD.FOREX", "SI=F"),
    Instrument("XPTUSD", "Platinum", Category.COMMODITY, "XPTUSD.FOREX", "PL=F"),
    Instrument("CL=F", "Crude Oil", Category.COMMODITY, None, "CL=F"),
)

CRYPTO: tuple[Instrument, ...] = tuple(
    Instrument(f"{coin}-USD", coin, Category.CRYPTO, f"{coin}-USD.CC", f"{coin}-USD")
    for coin in ("BTC", "ETH", "XRP", "SOL", "ADA", "DOGE", "AVAX", "BNB", "LTC")
)

ALL_INSTRUMENTS: tuple[Instrument, ...] = EQUITIES + INDICES + FOREX + COMMODITIES + CRYPTO

_BY_SYMBOL: dict[str, Instrument] = {i.symbol: i for i in ALL_INSTRUMENTS}

# Crypto names used for the movers view (subset of CRYPTO)
CRYPTO_MOVER_COINS: tuple[str, ...] = ("BTC", "ETH", "XRP", "SOL", "ADA")

# Cross-asset series for the correlation matrix: display name -> chart symbol
CORRELATION_ASSETS: dict[str, str] = {
    "USD Index": "DX-Y.NYB",
    "Gold": "GC=F",
    "Silver": "SI=F",
    "Crude Oil": "CL=F",
    "Platinum": "PL=F",
    "EUR/USD": "EURUSD=X",
    "Bitcoin": "BTC-USD",
    "S&P 500": "^GSPC",
    "JSE Top 40": "^J200.JO",
}

CURRENCIES: tuple[str, ...] = ("USD", "EUR", "GBP", "JPY", "AUD", "CHF", "ZAR")


@dataclass(frozen=True, slots=True)
class FeedSpec:
    """One upstream streaming connection and the instruments it carries."""

    name: str  # Path segment on the stream endpoint, e.g. ".../ws/forex"
    instruments: tuple[Instrument, ...]

    @property
    def symbols(self) -> list[str]:
        return [i.symbol for i in self.instruments]

    @property
    def categories(self) -> set[Category]:
        return {i.category for i in self.instruments}

    def category_of(self, symbol: str) -> Category | None:
        inst = _BY_SYMBOL.get(symbol)
        if inst is None or inst not in self.instruments:
            return None
        return inst.category


FEEDS: tuple[FeedSpec, ...] = (
    FeedSpec("us", EQUITIES + tuple(i for i in INDICES if i.rest_symbol)),
    FeedSpec("forex", FOREX + tuple(i for i in COMMODITIES if i.rest_symbol)),
    FeedSpec("crypto", CRYPTO),
)


def instrument(symbol: str) -> Instrument | None:
    """Look up a registry instrument by its stream symbol."""
    return _BY_SYMBOL.get(symbol)


def instruments_for(category: Category | str) -> list[Instrument]:
    category = Category(category)
    return [i for i in ALL_INSTRUMENTS if i.category is category]


def streamed_instruments() -> list[Instrument]:
    return [i for feed in FEEDS for i in feed.instruments]


def feed_for(name: str) -> FeedSpec:
    for feed in FEEDS:
        if feed.name == name:
            return feed
    raise KeyError(name)


def split_pair(name: str) -> tuple[str, str]:
    """``"EUR/USD"`` or ``"EURUSD"`` -> ``("EUR", "USD")``."""
    if "/" in name:
        base, quote = name.split("/", 1)
        return base, quote
    return name[:3], name[3:6]
