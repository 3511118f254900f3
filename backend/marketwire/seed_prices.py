"""Seed prices and per-category parameters for the offline simulator."""

from .models import Category

# Starting prices for the streamed registry (approximate, as of project creation)
SEED_PRICES: dict[str, float] = {
    "AAPL.US": 190.00,
    "MSFT.US": 420.00,
    "AMZN.US": 185.00,
    "GOOGL.US": 175.00,
    "TSLA.US": 250.00,
    "NVDA.US": 800.00,
    "META.US": 500.00,
    "JPM.US": 195.00,
    "V.US": 280.00,
    "KO.US": 62.00,
    "JNJ.US": 155.00,
    "WMT.US": 68.00,
    "MA.US": 470.00,
    "PFE.US": 28.00,
    "NFLX.US": 600.00,
    "GSPC.INDX": 5200.00,
    "NDX.INDX": 18200.00,
    "DJI.INDX": 39000.00,
    "EURUSD": 1.0900,
    "GBPUSD": 1.2700,
    "USDJPY": 151.50,
    "USDZAR": 18.75,
    "EURZAR": 20.44,
    "GBPZAR": 23.81,
    "AUDUSD": 0.6550,
    "USDCHF": 0.9050,
    "XAUUSD": 2300.00,
    "XAGUSD": 27.00,
    "XPTUSD": 950.00,
    "BTC-USD": 65000.00,
    "ETH-USD": 3400.00,
    "XRP-USD": 0.52,
    "SOL-USD": 150.00,
    "ADA-USD": 0.45,
    "DOGE-USD": 0.15,
    "AVAX-USD": 35.00,
    "BNB-USD": 580.00,
    "LTC-USD": 82.00,
}

# Annualized GBM parameters per category
# sigma: volatility (higher = more price movement), mu: drift
CATEGORY_PARAMS: dict[Category, dict[str, float]] = {
    Category.EQUITY: {"sigma": 0.25, "mu": 0.05},
    Category.INDEX: {"sigma": 0.15, "mu": 0.05},
    Category.FOREX: {"sigma": 0.08, "mu": 0.0},
    Category.COMMODITY: {"sigma": 0.20, "mu": 0.02},
    Category.CRYPTO: {"sigma": 0.60, "mu": 0.05},
}

# Correlation between two instruments of the same / different categories
INTRA_CATEGORY_CORR: dict[Category, float] = {
    Category.EQUITY: 0.5,
    Category.INDEX: 0.8,  # Indices track each other closely
    Category.FOREX: 0.3,
    Category.COMMODITY: 0.6,  # Precious metals move together
    Category.CRYPTO: 0.7,
}
EQUITY_INDEX_CORR = 0.5
CROSS_CATEGORY_CORR = 0.05
