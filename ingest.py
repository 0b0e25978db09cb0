"""
Load monthly price history and dividends for a list of tickers into the store.

Usage:
    python ingest.py --csv data/acoes-listadas-b3.csv --limit 10

Tickers are read from the ``Ticker`` column of the CSV, suffixed with the
exchange code (``.SA`` by default) and fetched one by one from Yahoo Finance.
A failing ticker is reported and skipped; it never stops the run.
"""

import argparse
import logging
import os
import sys
import time

import pandas as pd
import yfinance as yf

from store import SCRIPT_DIR, SecurityDirectory, TimeSeriesStore, database_path_from_env

logger = logging.getLogger(__name__)

# ==============================================================================
# CONSTANTS
# ==============================================================================

DEFAULT_CSV_PATH = os.path.join(SCRIPT_DIR, 'data', 'acoes-listadas-b3.csv')
DEFAULT_SYMBOL_SUFFIX = '.SA'
DEFAULT_REQUEST_DELAY = 0.15  # seconds between tickers
MAX_RETRIES = 3
RETRY_DELAY = 1  # seconds, multiplied by attempt number
FAILURES_SHOWN = 10

META_FIELDS = (
    'currency', 'symbol', 'exchangeName', 'fullExchangeName', 'instrumentType',
    'timezone', 'exchangeTimezoneName', 'longName', 'shortName',
)

# ==============================================================================
# END CONSTANTS
# ==============================================================================


def read_tickers(csv_path):
    """
    Read unique ticker symbols from a CSV file, keeping file order.

    Args:
        csv_path: CSV with a ``Ticker`` (or ``ticker``) column

    Returns:
        List of ticker strings without blanks or duplicates
    """
    frame = pd.read_csv(csv_path, dtype=str)
    column = 'Ticker' if 'Ticker' in frame.columns else 'ticker'
    if column not in frame.columns:
        return []

    tickers = []
    seen = set()
    for raw in frame[column].dropna():
        ticker = raw.strip()
        if not ticker or ticker in seen:
            continue
        seen.add(ticker)
        tickers.append(ticker)
    return tickers


def to_epoch_seconds(value):
    """
    Convert a pandas/datetime timestamp or epoch number to integer seconds.

    Returns None for missing values.
    """
    if value is None:
        return None
    if hasattr(value, 'timestamp'):
        if pd.isna(value):
            return None
        return int(value.timestamp())
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(number) or number == 0:
        return None
    return int(number)


def _optional_float(value):
    if value is None or pd.isna(value):
        return None
    return float(value)


def fetch_monthly_chart(symbol):
    """
    Fetch the full monthly history of a symbol from Yahoo Finance.

    Includes retry logic with linear backoff.

    Args:
        symbol: Yahoo symbol including exchange suffix (e.g. 'PETR4.SA')

    Returns:
        Tuple of (history DataFrame, dividends Series, metadata dict)

    Raises:
        ValueError: Yahoo returned no rows for the symbol after all retries
    """
    last_error = None
    for attempt in range(MAX_RETRIES):
        try:
            stock = yf.Ticker(symbol)
            # Raw prices: dividends are credited explicitly by the simulation
            hist = stock.history(period='max', interval='1mo', auto_adjust=False)
            if hist.empty:
                raise ValueError(f'{symbol} returned empty data')
            metadata = dict(stock.history_metadata or {})
            return hist, stock.dividends, metadata
        except Exception as e:
            last_error = e
            logger.warning("Fetching %s failed (attempt %d/%d): %s",
                           symbol, attempt + 1, MAX_RETRIES, e)
            if attempt < MAX_RETRIES - 1:
                time.sleep(RETRY_DELAY * (attempt + 1))
    raise last_error


def extract_meta(metadata):
    meta = {field: metadata.get(field) for field in META_FIELDS}
    meta['firstTradeDate'] = to_epoch_seconds(metadata.get('firstTradeDate'))
    meta['regularMarketPrice'] = _optional_float(metadata.get('regularMarketPrice'))
    return meta


def extract_prices(hist):
    """Convert a yfinance history frame into store price rows."""
    rows = []
    for index, row in hist.iterrows():
        timestamp = to_epoch_seconds(index)
        if not timestamp:
            continue
        rows.append({
            'timestamp': timestamp,
            'low_price': _optional_float(row.get('Low')),
            'open_price': _optional_float(row.get('Open')),
            'close_price': _optional_float(row.get('Close')),
        })
    return rows


def extract_dividends(dividends):
    """
    Convert a yfinance dividends series into store dividend rows.

    Yahoo only exposes the event date, which is stored as the announce
    timestamp with no payment timestamp.
    """
    rows = []
    if dividends is None or dividends.empty:
        return rows
    for index, amount in dividends.items():
        timestamp = to_epoch_seconds(index)
        if not timestamp:
            continue
        rows.append({
            'announce_timestamp': timestamp,
            'payment_timestamp': None,
            'amount': _optional_float(amount),
        })
    return rows


def ingest_ticker(directory, store, ticker, suffix=DEFAULT_SYMBOL_SUFFIX):
    """
    Fetch one ticker and replace its stored history.

    Returns:
        Dict with ticker, stock_id, prices_inserted and dividends_inserted,
        or ticker and error when anything failed
    """
    symbol = f'{ticker}{suffix}'
    try:
        hist, dividends, metadata = fetch_monthly_chart(symbol)
        meta = extract_meta(metadata)
        if not meta.get('symbol'):
            meta['symbol'] = symbol
        stock_id = directory.upsert_security(meta)
        prices_inserted, dividends_inserted = store.replace_history(
            stock_id, extract_prices(hist), extract_dividends(dividends)
        )
        return {
            'ticker': ticker,
            'stock_id': stock_id,
            'prices_inserted': prices_inserted,
            'dividends_inserted': dividends_inserted,
        }
    except Exception as e:
        logger.warning("Ingest of %s failed: %s", ticker, e)
        return {'ticker': ticker, 'error': str(e)}


def run_ingest(tickers, database_path, suffix=DEFAULT_SYMBOL_SUFFIX, delay=DEFAULT_REQUEST_DELAY):
    """Ingest tickers sequentially and return the per-ticker results."""
    directory = SecurityDirectory(database_path)
    store = TimeSeriesStore(database_path)
    store.create_schema()

    results = []
    for position, ticker in enumerate(tickers, start=1):
        logger.info("[%d/%d] %s", position, len(tickers), ticker)
        results.append(ingest_ticker(directory, store, ticker, suffix=suffix))
        if delay and position < len(tickers):
            time.sleep(delay)

    successes = [r for r in results if 'error' not in r]
    failures = [r for r in results if 'error' in r]
    logger.info("Ingest complete. Stocks: %d ok, %d failed.", len(successes), len(failures))
    logger.info("Inserted price rows: %d, dividend rows: %d",
                sum(r['prices_inserted'] for r in successes),
                sum(r['dividends_inserted'] for r in successes))
    for failure in failures[:FAILURES_SHOWN]:
        logger.info(" - %s: %s", failure['ticker'], failure['error'])
    if len(failures) > FAILURES_SHOWN:
        logger.info(" ... and %d more.", len(failures) - FAILURES_SHOWN)
    return results


def build_parser():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--csv', default=DEFAULT_CSV_PATH, help='CSV file with a Ticker column')
    parser.add_argument('--db', default=None, help='SQLite database path')
    parser.add_argument('--limit', type=int, default=None, help='Only ingest the first N tickers')
    parser.add_argument('--suffix', default=DEFAULT_SYMBOL_SUFFIX, help='Exchange suffix for Yahoo symbols')
    parser.add_argument('--delay', type=float, default=DEFAULT_REQUEST_DELAY,
                        help='Seconds to wait between tickers')
    return parser


def main(argv=None):
    logging.basicConfig(
        level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    args = build_parser().parse_args(argv)

    if not os.path.exists(args.csv):
        logger.error("CSV not found at %s", args.csv)
        return 1

    tickers = read_tickers(args.csv)
    selected = tickers[:args.limit] if args.limit and args.limit > 0 else tickers
    logger.info("Tickers to ingest: %d (of %d)", len(selected), len(tickers))

    run_ingest(selected, args.db or database_path_from_env(), suffix=args.suffix, delay=args.delay)
    return 0


if __name__ == '__main__':
    sys.exit(main())
