"""
SQLite-backed data access for securities, monthly prices and dividends.

Two read-side collaborators live here: SecurityDirectory resolves and
searches security metadata, TimeSeriesStore serves the price and dividend
series a simulation runs over. Both open a short-lived connection per call,
so one instance can be shared across requests.
"""

import logging
import os
import sqlite3
from contextlib import closing

from simulation import DividendEvent, PricePoint, SecurityInfo

logger = logging.getLogger(__name__)

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_DATABASE_PATH = os.path.join(SCRIPT_DIR, 'data', 'stocks.sqlite3')

SEARCH_DEFAULT_LIMIT = 20
SEARCH_MAX_LIMIT = 100

SECURITY_COLUMNS = (
    'currency', 'symbol', 'exchangeName', 'fullExchangeName', 'instrumentType',
    'firstTradeDate', 'timezone', 'exchangeTimezoneName', 'regularMarketPrice',
    'longName', 'shortName',
)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS stock_infos (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        currency TEXT,
        symbol TEXT UNIQUE,
        exchangeName TEXT,
        fullExchangeName TEXT,
        instrumentType TEXT,
        firstTradeDate INTEGER,
        timezone TEXT,
        exchangeTimezoneName TEXT,
        regularMarketPrice REAL,
        longName TEXT,
        shortName TEXT
    );

    CREATE TABLE IF NOT EXISTS stock_historical_price (
        stock_id INTEGER NOT NULL,
        timestamp INTEGER NOT NULL,
        low_price REAL,
        open_price REAL,
        close_price REAL,
        PRIMARY KEY (stock_id, timestamp),
        FOREIGN KEY (stock_id) REFERENCES stock_infos(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS stock_historical_dividend_yield (
        stock_id INTEGER NOT NULL,
        announce_timestamp INTEGER NOT NULL,
        payment_timestamp INTEGER,
        amount REAL,
        PRIMARY KEY (stock_id, announce_timestamp),
        FOREIGN KEY (stock_id) REFERENCES stock_infos(id) ON DELETE CASCADE
    );
"""


def database_path_from_env():
    return os.environ.get('DCA_DATABASE_PATH', DEFAULT_DATABASE_PATH)


class SqliteRepository:
    def __init__(self, database_path):
        self.database_path = database_path

    def _connect(self):
        connection = sqlite3.connect(self.database_path)
        connection.row_factory = sqlite3.Row
        connection.execute('PRAGMA foreign_keys = ON')
        return connection

    def create_schema(self):
        directory = os.path.dirname(self.database_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with closing(self._connect()) as connection:
            connection.executescript(SCHEMA)
            connection.commit()


class SecurityDirectory(SqliteRepository):
    """Security metadata lookups."""

    def resolve_security(self, security_id):
        """
        Resolve a security id to its display metadata.

        Returns:
            SecurityInfo, or None when the id is unknown
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                'SELECT id, symbol, longName, shortName, firstTradeDate '
                'FROM stock_infos WHERE id = ?',
                (security_id,),
            ).fetchone()
        if row is None:
            return None
        return SecurityInfo(
            id=row['id'],
            symbol=row['symbol'],
            long_name=row['longName'],
            short_name=row['shortName'],
            first_trade_date=row['firstTradeDate'],
        )

    def search_securities(self, query, limit=SEARCH_DEFAULT_LIMIT):
        """
        Find securities by substring of symbol or name.

        When ``query`` parses as a number, securities whose regular market
        price or first trade date equal it exactly also match.

        Args:
            query: Free-text search term
            limit: Maximum number of rows (capped at SEARCH_MAX_LIMIT)

        Returns:
            List of dicts with the stock_infos columns, ordered by symbol

        Example:
            >>> directory.search_securities('petr')[0]['symbol']
            'PETR4.SA'
        """
        query = (query or '').strip()
        if not query:
            return []
        limit = max(1, min(int(limit), SEARCH_MAX_LIMIT))

        params = {'like': f'%{query}%', 'limit': limit}
        numeric_clause = ''
        try:
            params['num'] = float(query)
            numeric_clause = 'OR regularMarketPrice = :num OR firstTradeDate = :num'
        except ValueError:
            pass

        sql = f"""
            SELECT id, currency, symbol, exchangeName, fullExchangeName, instrumentType,
                   firstTradeDate, timezone, exchangeTimezoneName, regularMarketPrice,
                   longName, shortName
            FROM stock_infos
            WHERE (
                symbol LIKE :like OR
                longName LIKE :like OR
                shortName LIKE :like
            )
            {numeric_clause}
            ORDER BY symbol ASC
            LIMIT :limit
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(sql, params).fetchall()
        return [dict(row) for row in rows]

    def upsert_security(self, meta):
        """
        Insert or update a security keyed by symbol.

        Args:
            meta: Dict with any of SECURITY_COLUMNS; ``symbol`` is required

        Returns:
            The security's id
        """
        if not meta.get('symbol'):
            raise ValueError('security metadata requires a symbol')
        values = {column: meta.get(column) for column in SECURITY_COLUMNS}
        columns = ', '.join(SECURITY_COLUMNS)
        placeholders = ', '.join(f':{column}' for column in SECURITY_COLUMNS)
        updates = ',\n'.join(
            f'{column}=excluded.{column}' for column in SECURITY_COLUMNS if column != 'symbol'
        )
        sql = f"""
            INSERT INTO stock_infos ({columns}) VALUES ({placeholders})
            ON CONFLICT(symbol) DO UPDATE SET
            {updates}
        """
        with closing(self._connect()) as connection:
            connection.execute(sql, values)
            connection.commit()
            row = connection.execute(
                'SELECT id FROM stock_infos WHERE symbol = ?', (values['symbol'],)
            ).fetchone()
        return row['id']


class TimeSeriesStore(SqliteRepository):
    """Monthly prices and dividend events per security."""

    def get_earliest_price_timestamp(self, security_id):
        with closing(self._connect()) as connection:
            row = connection.execute(
                'SELECT MIN(timestamp) AS earliest FROM stock_historical_price WHERE stock_id = ?',
                (security_id,),
            ).fetchone()
        return row['earliest'] if row is not None else None

    def get_prices_from(self, security_id, start_timestamp):
        """Price points with timestamp >= start, oldest first."""
        with closing(self._connect()) as connection:
            rows = connection.execute(
                """
                SELECT timestamp, close_price
                FROM stock_historical_price
                WHERE stock_id = ? AND timestamp >= ?
                ORDER BY timestamp ASC
                """,
                (security_id, start_timestamp),
            ).fetchall()
        return [PricePoint(timestamp=row['timestamp'], close_price=row['close_price']) for row in rows]

    def get_dividends_from(self, security_id, start_timestamp):
        """Dividend events announced at or after start, oldest announcement first."""
        with closing(self._connect()) as connection:
            rows = connection.execute(
                """
                SELECT announce_timestamp, payment_timestamp, amount
                FROM stock_historical_dividend_yield
                WHERE stock_id = ? AND announce_timestamp >= ?
                ORDER BY announce_timestamp ASC
                """,
                (security_id, start_timestamp),
            ).fetchall()
        return [
            DividendEvent(
                announce_timestamp=row['announce_timestamp'],
                payment_timestamp=row['payment_timestamp'],
                amount=row['amount'],
            )
            for row in rows
        ]

    def replace_history(self, security_id, prices, dividends):
        """
        Replace all stored prices and dividends of a security in one transaction.

        Args:
            security_id: Id returned by SecurityDirectory.upsert_security
            prices: Iterable of dicts with timestamp, low_price, open_price, close_price
            dividends: Iterable of dicts with announce_timestamp, payment_timestamp, amount

        Returns:
            Tuple of (prices_inserted, dividends_inserted)
        """
        price_rows = [
            (security_id, row['timestamp'], row.get('low_price'),
             row.get('open_price'), row.get('close_price'))
            for row in prices
        ]
        dividend_rows = [
            (security_id, row['announce_timestamp'], row.get('payment_timestamp'), row.get('amount'))
            for row in dividends
        ]
        with closing(self._connect()) as connection:
            with connection:
                connection.execute(
                    'DELETE FROM stock_historical_price WHERE stock_id = ?', (security_id,)
                )
                connection.execute(
                    'DELETE FROM stock_historical_dividend_yield WHERE stock_id = ?', (security_id,)
                )
                connection.executemany(
                    """
                    INSERT OR REPLACE INTO stock_historical_price
                        (stock_id, timestamp, low_price, open_price, close_price)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    price_rows,
                )
                connection.executemany(
                    """
                    INSERT OR REPLACE INTO stock_historical_dividend_yield
                        (stock_id, announce_timestamp, payment_timestamp, amount)
                    VALUES (?, ?, ?, ?)
                    """,
                    dividend_rows,
                )
        logger.debug("Stored %d prices and %d dividends for stock %s",
                     len(price_rows), len(dividend_rows), security_id)
        return len(price_rows), len(dividend_rows)
