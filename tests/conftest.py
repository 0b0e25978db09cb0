"""
Shared test helpers for the investment simulator tests.

Usage:
    from conftest import make_prices, seed_security

    def test_something():
        prices = make_prices([10, 10, 20])
        result = simulate(prices, [], initial_investment=100)
"""

import os
import random
import tempfile
from unittest.mock import MagicMock

import pandas as pd

from simulation import DividendEvent, PricePoint
from store import SecurityDirectory, TimeSeriesStore


def month_timestamps(num_months, start_date='2020-01-01'):
    """Epoch seconds of consecutive month starts (UTC)."""
    dates = pd.date_range(start=start_date, periods=num_months, freq='MS', tz='UTC')
    return [int(date.timestamp()) for date in dates]


def make_prices(closes, start_date='2020-01-01'):
    """
    Build a monthly PricePoint series from a list of closing prices.

    Example:
        >>> make_prices([10, 20])[1].close_price
        20
    """
    timestamps = month_timestamps(len(closes), start_date=start_date)
    return [PricePoint(timestamp=ts, close_price=close) for ts, close in zip(timestamps, closes)]


def make_dividend(timestamp, amount, payment_timestamp=None):
    return DividendEvent(
        announce_timestamp=timestamp, payment_timestamp=payment_timestamp, amount=amount
    )


def make_random_walk(num_months=60, start_price=20.0, volatility=0.08, seed=42):
    """Closing prices following a seeded random walk, floored at one cent."""
    rng = random.Random(seed)
    closes = [start_price]
    for _ in range(num_months - 1):
        closes.append(max(0.01, closes[-1] * (1 + rng.gauss(0, volatility))))
    return closes


def make_quarterly_dividends(prices, amount=0.25, every=3, offset_seconds=86400):
    """A dividend a few days after every ``every``-th price point."""
    return [
        make_dividend(point.timestamp + offset_seconds, amount)
        for point in prices[1::every]
    ]


def create_temp_database():
    """Create an empty schema in a fresh temporary SQLite file and return its path."""
    handle, path = tempfile.mkstemp(suffix='.sqlite3')
    os.close(handle)
    TimeSeriesStore(path).create_schema()
    return path


def seed_security(database_path, prices, dividends=(), symbol='TEST3.SA',
                  long_name='Test Company S.A.', short_name='TEST ON',
                  first_trade_date=None, regular_market_price=None):
    """
    Insert one security with its history.

    Args:
        prices: PricePoint list
        dividends: DividendEvent list

    Returns:
        The new security id
    """
    directory = SecurityDirectory(database_path)
    store = TimeSeriesStore(database_path)
    stock_id = directory.upsert_security({
        'symbol': symbol,
        'longName': long_name,
        'shortName': short_name,
        'currency': 'BRL',
        'firstTradeDate': first_trade_date,
        'regularMarketPrice': regular_market_price,
    })
    store.replace_history(
        stock_id,
        [{'timestamp': p.timestamp, 'close_price': p.close_price} for p in prices],
        [
            {
                'announce_timestamp': d.announce_timestamp,
                'payment_timestamp': d.payment_timestamp,
                'amount': d.amount,
            }
            for d in dividends
        ],
    )
    return stock_id


def create_mock_ticker(closes, dividends=None, start_date='2020-01-01', metadata=None):
    """
    Create a mock yfinance Ticker with monthly history, dividends and metadata.

    Args:
        closes: List of monthly closing prices
        dividends: Optional dict of {date_str: amount}
        metadata: Optional history_metadata dict

    Returns:
        MagicMock configured like yf.Ticker
    """
    mock_ticker = MagicMock()
    dates = pd.date_range(start=start_date, periods=len(closes), freq='MS', tz='America/Sao_Paulo')
    mock_ticker.history.return_value = pd.DataFrame({
        'Open': closes,
        'High': closes,
        'Low': closes,
        'Close': closes,
        'Volume': [1000000] * len(closes),
    }, index=dates)

    if dividends:
        index = pd.DatetimeIndex([pd.Timestamp(d, tz='America/Sao_Paulo') for d in dividends])
        mock_ticker.dividends = pd.Series(list(dividends.values()), index=index)
    else:
        mock_ticker.dividends = pd.Series(dtype=float)

    mock_ticker.history_metadata = metadata if metadata is not None else {
        'currency': 'BRL',
        'symbol': 'TEST3.SA',
        'exchangeName': 'SAO',
        'fullExchangeName': 'São Paulo',
        'instrumentType': 'EQUITY',
        'firstTradeDate': 946900800,
        'timezone': 'BRT',
        'exchangeTimezoneName': 'America/Sao_Paulo',
        'regularMarketPrice': 31.5,
        'longName': 'Test Company S.A.',
        'shortName': 'TEST ON',
    }
    return mock_ticker
