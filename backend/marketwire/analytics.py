"""Derived cross-asset statistics. Pure functions; nothing here writes state."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

import numpy as np

from .models import Mover
from .symbols import CURRENCIES, split_pair

STRONG = "Strong"
WEAK = "Weak"
NEUTRAL = "Neutral"


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation of two series, aligned on their most recent points.

    Returns 0.0 instead of raising for empty input or a zero-variance
    series.
    """
    n = min(len(x), len(y))
    if n == 0:
        return 0.0

    a = np.asarray(x[len(x) - n:], dtype=float)
    b = np.asarray(y[len(y) - n:], dtype=float)
    if np.ptp(a) == 0 or np.ptp(b) == 0:
        return 0.0
    da = a - a.mean()
    db = b - b.mean()

    denominator = np.sqrt(np.sum(da * da) * np.sum(db * db))
    if denominator == 0 or not np.isfinite(denominator):
        return 0.0
    return float(np.sum(da * db) / denominator)


def correlation_matrix(
    series: Mapping[str, Sequence[float]],
    min_points: int = 5,
) -> dict:
    """Pairwise correlation of every series with at least ``min_points`` closes.

    Diagonal cells are exactly 1.0; the rest are rounded to two decimals.
    """
    assets = [name for name, closes in series.items() if len(closes) >= min_points]
    matrix: dict[str, dict[str, float]] = {}
    for a in assets:
        matrix[a] = {}
        for b in assets:
            matrix[a][b] = 1.0 if a == b else round(pearson(series[a], series[b]), 2)
    return {"assets": assets, "matrix": matrix}


def currency_strength_scores(
    changes: Iterable[tuple[str, float]],
    currencies: Iterable[str] = CURRENCIES,
) -> dict[str, float]:
    """Average signed percent contribution per currency.

    For each ``(pair, pct)`` the base currency gains ``pct`` and the quote
    currency loses it; each currency's total is divided by the number of
    pairs it appears in.
    """
    totals = {c: 0.0 for c in currencies}
    counts = {c: 0 for c in currencies}

    for pair, pct in changes:
        base, quote = split_pair(pair)
        for currency, signed in ((base, pct), (quote, -pct)):
            totals[currency] = totals.get(currency, 0.0) + signed
            counts[currency] = counts.get(currency, 0) + 1

    return {c: (totals[c] / counts[c] if counts[c] else 0.0) for c in totals}


def classify_strength(score: float, threshold: float = 0.3) -> str:
    if score >= threshold:
        return STRONG
    if score <= -threshold:
        return WEAK
    return NEUTRAL


def currency_strength(
    changes: Iterable[tuple[str, float]],
    currencies: Iterable[str] = CURRENCIES,
    threshold: float = 0.3,
) -> dict[str, str]:
    """Strong / Weak / Neutral per currency from pair percent changes."""
    scores = currency_strength_scores(changes, currencies)
    return {c: classify_strength(s, threshold) for c, s in scores.items()}


def rank_movers(candidates: Iterable[Mover], limit: int = 10) -> list[Mover]:
    """Dedup by symbol (keep the larger move), sort by magnitude, truncate."""
    best: dict[str, Mover] = {}
    for mover in candidates:
        held = best.get(mover.symbol)
        if held is None or abs(mover.raw_change) > abs(held.raw_change):
            best[mover.symbol] = mover
    ranked = sorted(best.values(), key=lambda m: abs(m.raw_change), reverse=True)
    return ranked[:limit]
