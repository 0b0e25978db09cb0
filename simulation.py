"""
Investment simulation engine.

Replays a buy-and-hold strategy over a monthly price series: an initial
purchase at the first price point, optional monthly contributions at every
following point, and dividends credited (and optionally reinvested) between
consecutive points.

Everything in this module is pure. Portfolio state moves through immutable
PortfolioState snapshots, so two runs over the same inputs produce identical
ledgers and concurrent requests never share anything mutable.
"""

import logging
import math
from bisect import bisect_right
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar, List, Optional, Sequence, Tuple

from errors import NoDataFromStart

logger = logging.getLogger(__name__)

# ==============================================================================
# CONSTANTS
# ==============================================================================

REPORTING_QUANTUM = Decimal('0.01')  # Ledger and summary values are rounded for display only

INITIAL_INVESTMENT = 'initial_investment'
MONTHLY_INVESTMENT = 'monthly_investment'
DIVIDENDS_RECEIVED = 'dividends_received'
DIVIDENDS_REINVESTED = 'dividends_received_and_reinvested'

# ==============================================================================
# END CONSTANTS
# ==============================================================================


def clean_number(value):
    """
    Coerce a stored price or amount to a float usable in calculations.

    Absent, non-numeric and non-finite values count as 0.

    Example:
        >>> clean_number(None)
        0.0
        >>> clean_number('12.5')
        12.5
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def round_amount(value):
    """
    Round a reported amount to cents, half away from zero.

    The exact binary value of the float decides ties, so 0.125 rounds up
    while 1.005 (stored as 1.00499...) rounds down.

    Example:
        >>> round_amount(0.125)
        0.13
    """
    return float(Decimal(value).quantize(REPORTING_QUANTUM, rounding=ROUND_HALF_UP))


# ==============================================================================
# DATA MODEL
# ==============================================================================

@dataclass(frozen=True)
class PricePoint:
    """One monthly closing price sample."""

    timestamp: int
    close_price: Optional[float] = None

    @property
    def price(self) -> float:
        return clean_number(self.close_price)


@dataclass(frozen=True)
class DividendEvent:
    """A per-share cash distribution with an announce date and optional payment date."""

    announce_timestamp: int
    payment_timestamp: Optional[int] = None
    amount: Optional[float] = None

    @property
    def effective_timestamp(self) -> int:
        # Cash arrives on the payment date when one is known
        if self.payment_timestamp:
            return self.payment_timestamp
        return self.announce_timestamp

    @property
    def amount_per_share(self) -> float:
        return clean_number(self.amount)


@dataclass(frozen=True)
class SecurityInfo:
    """Display metadata for a security; used for reporting only."""

    id: int
    symbol: Optional[str] = None
    long_name: Optional[str] = None
    short_name: Optional[str] = None
    first_trade_date: Optional[int] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.long_name or self.short_name or self.symbol

    def to_dict(self):
        return {
            'id': self.id,
            'symbol': self.symbol,
            'displayName': self.display_name,
            'firstTradeDate': self.first_trade_date,
        }


@dataclass(frozen=True)
class SimulationRequest:
    security_id: int
    initial_investment: float
    start_timestamp: int
    monthly_investment: float = 0.0
    reinvest_dividends: bool = False

    def to_dict(self):
        return {
            'securityId': self.security_id,
            'initialInvestment': self.initial_investment,
            'startTimestamp': self.start_timestamp,
            'monthlyInvestment': self.monthly_investment,
            'reinvestDividends': self.reinvest_dividends,
        }


@dataclass(frozen=True)
class PortfolioState:
    """
    Running position carried between simulation steps.

    All amounts are kept at full precision; rounding only happens when a
    ledger entry or the summary is produced.
    """

    cash: float = 0.0
    shares: int = 0
    contributed: float = 0.0
    total_dividends: float = 0.0


@dataclass(frozen=True)
class Operation:
    """Ledger entry. Concrete subclasses fix ``kind``."""

    kind: ClassVar[str] = ''

    timestamp: int
    price_used: float
    shares_bought: int
    total_shares: int
    available_cash: float
    total_contributed: float

    def to_dict(self):
        return {
            'kind': self.kind,
            'timestamp': self.timestamp,
            'priceUsed': self.price_used,
            'sharesBought': self.shares_bought,
            'totalShares': self.total_shares,
            'availableCash': self.available_cash,
            'totalContributed': self.total_contributed,
        }


@dataclass(frozen=True)
class InitialInvestment(Operation):
    kind: ClassVar[str] = INITIAL_INVESTMENT


@dataclass(frozen=True)
class MonthlyInvestment(Operation):
    kind: ClassVar[str] = MONTHLY_INVESTMENT


@dataclass(frozen=True)
class DividendOperation(Operation):
    dividend_amount: float = 0.0

    def to_dict(self):
        payload = super().to_dict()
        payload['dividendAmount'] = self.dividend_amount
        return payload


@dataclass(frozen=True)
class DividendsReceived(DividendOperation):
    kind: ClassVar[str] = DIVIDENDS_RECEIVED


@dataclass(frozen=True)
class DividendsReinvested(DividendOperation):
    kind: ClassVar[str] = DIVIDENDS_REINVESTED


OPERATION_TYPES = {
    cls.kind: cls
    for cls in (InitialInvestment, MonthlyInvestment, DividendsReceived, DividendsReinvested)
}


@dataclass(frozen=True)
class SimulationSummary:
    total_amount: float
    total_dividends: float
    profit: float
    investment: float
    shares: int
    last_price: float
    cash: float

    def to_dict(self, security=None):
        payload = {
            'totalAmount': self.total_amount,
            'totalDividends': self.total_dividends,
            'profit': self.profit,
            'investment': self.investment,
            'shares': self.shares,
            'lastPrice': self.last_price,
            'cash': self.cash,
        }
        if security is not None:
            payload['security'] = security.to_dict()
        return payload


@dataclass(frozen=True)
class SimulationResult:
    ledger: Tuple[Operation, ...]
    summary: SimulationSummary
    state: PortfolioState
    last_price: float

    @property
    def total_amount(self) -> float:
        """Final position value from the unrounded running state."""
        return self.state.shares * self.last_price + self.state.cash


# ==============================================================================
# END DATA MODEL
# ==============================================================================


# ==============================================================================
# PURE CALCULATION FUNCTIONS
# ==============================================================================

def calculate_whole_shares(cash, price):
    """
    Calculate how many whole shares the available cash can buy.

    Fractional shares are never bought. The result never costs more than
    ``cash``, even when the float division lands just above an integer.

    Args:
        cash: Uninvested cash available for the purchase
        price: Current share price

    Returns:
        Non-negative integer share count (0 when price is zero or negative)

    Example:
        >>> calculate_whole_shares(100, 30)
        3
        >>> calculate_whole_shares(100, 0)
        0
    """
    if price <= 0 or cash <= 0:
        return 0
    shares = math.floor(cash / price)
    while shares > 0 and shares * price > cash:
        shares -= 1
    return shares


def calculate_dividend_cash(shares, dividend_per_share):
    """Cash received for ``shares`` held when ``dividend_per_share`` is paid."""
    return shares * dividend_per_share


def _record(kind, state, timestamp, price, shares_bought, **extra):
    operation_cls = OPERATION_TYPES[kind]
    return operation_cls(
        timestamp=timestamp,
        price_used=price,
        shares_bought=shares_bought,
        total_shares=state.shares,
        available_cash=round_amount(state.cash),
        total_contributed=round_amount(state.contributed),
        **extra
    )


def apply_buy(state, kind, amount, price, timestamp):
    """
    Contribute ``amount`` in cash and buy as many whole shares as possible.

    The contribution is added to the uninvested cash first, so leftovers
    from earlier steps take part in the purchase. With a non-positive price
    nothing is bought and the contribution stays in cash.

    Args:
        state: PortfolioState before the contribution
        kind: INITIAL_INVESTMENT or MONTHLY_INVESTMENT
        amount: Cash contributed by the investor
        price: Share price for this step
        timestamp: Price point the purchase is anchored to

    Returns:
        Tuple of (new_state, operation)

    Example:
        >>> state, op = apply_buy(PortfolioState(), INITIAL_INVESTMENT, 100, 30, 0)
        >>> state.shares, state.cash
        (3, 10.0)
    """
    cash = state.cash + amount
    bought = calculate_whole_shares(cash, price)
    new_state = replace(
        state,
        cash=cash - bought * price,
        shares=state.shares + bought,
        contributed=state.contributed + amount,
    )
    return new_state, _record(kind, new_state, timestamp, price, bought)


def apply_dividends(state, dividend_per_share, price, timestamp, reinvest):
    """
    Credit one period's dividends on the shares currently held.

    Entitlement is evaluated on ``state.shares`` at the attribution point,
    which already includes the monthly purchase made at the same price
    point. When reinvesting, all uninvested cash (not only the dividend)
    is used to buy whole shares at ``price``.

    Returns:
        Tuple of (new_state, operation); operation is None when no cash was received
    """
    received = calculate_dividend_cash(state.shares, dividend_per_share)
    if received <= 0:
        return state, None

    cash = state.cash + received
    bought = calculate_whole_shares(cash, price) if reinvest else 0
    new_state = replace(
        state,
        cash=cash - bought * price,
        shares=state.shares + bought,
        total_dividends=state.total_dividends + received,
    )
    kind = DIVIDENDS_REINVESTED if reinvest else DIVIDENDS_RECEIVED
    operation = _record(
        kind, new_state, timestamp, price, bought,
        dividend_amount=round_amount(received),
    )
    return new_state, operation


def summarize(state, last_price):
    total_amount = state.shares * last_price + state.cash
    return SimulationSummary(
        total_amount=round_amount(total_amount),
        total_dividends=round_amount(state.total_dividends),
        profit=round_amount(total_amount - state.contributed),
        investment=round_amount(state.contributed),
        shares=state.shares,
        last_price=last_price,
        cash=round_amount(state.cash),
    )


# ==============================================================================
# END PURE CALCULATION FUNCTIONS
# ==============================================================================


# ==============================================================================
# DIVIDEND ATTRIBUTION
# ==============================================================================

class DividendIndex:
    """
    Dividend events sorted by effective timestamp for window lookups.

    A window ``(start, end]`` is open on the left and closed on the right,
    so consecutive windows never share an event.
    """

    def __init__(self, dividends):
        ordered = sorted(dividends, key=lambda event: event.effective_timestamp)
        self.events = ordered
        self.timestamps = [event.effective_timestamp for event in ordered]

    def events_between(self, start, end):
        low = bisect_right(self.timestamps, start)
        high = bisect_right(self.timestamps, end)
        return self.events[low:high]


def attribute_dividends(prices, dividends):
    """
    Assign every dividend event to the price window that receives its cash.

    Args:
        prices: Ordered sequence of PricePoint
        dividends: Iterable of DividendEvent

    Returns:
        List of (previous_timestamp, current_timestamp, events) tuples,
        one per pair of consecutive price points
    """
    index = DividendIndex(dividends)
    return [
        (previous.timestamp, current.timestamp,
         index.events_between(previous.timestamp, current.timestamp))
        for previous, current in zip(prices, prices[1:])
    ]


# ==============================================================================
# END DIVIDEND ATTRIBUTION
# ==============================================================================


def ensure_chronological(prices):
    for previous, current in zip(prices, prices[1:]):
        if current.timestamp <= previous.timestamp:
            raise ValueError(
                f'price series must be strictly increasing: '
                f'{current.timestamp} follows {previous.timestamp}'
            )


def simulate(prices: Sequence[PricePoint],
             dividends: Sequence[DividendEvent],
             initial_investment: float,
             monthly_investment: float = 0.0,
             reinvest_dividends: bool = False) -> SimulationResult:
    """
    Run the buy-and-hold simulation over a monthly price series.

    ORDER OF OPERATIONS:
    1. Initial investment at the first price point
    2. For every following price point:
       a. Monthly contribution and purchase (when monthly_investment > 0)
       b. Dividends with effective timestamp in (previous, current] credited
          on the shares held after step (a), then optionally reinvested
    3. Final valuation at the last price point

    Args:
        prices: Non-empty, strictly increasing sequence of PricePoint
        dividends: DividendEvent list; events outside every window are ignored
        initial_investment: Cash contributed at the first price point
        monthly_investment: Cash contributed at each later price point (0 disables)
        reinvest_dividends: Buy whole shares with dividend cash when True

    Returns:
        SimulationResult with the chronological ledger and rounded summary

    Raises:
        NoDataFromStart: prices is empty
        ValueError: prices are not strictly increasing
    """
    if not prices:
        raise NoDataFromStart()
    ensure_chronological(prices)

    windows = attribute_dividends(prices, dividends)
    outside = len(dividends) - sum(len(events) for _, _, events in windows)
    if outside:
        logger.debug("%d dividend event(s) fall outside the simulated price range", outside)

    ledger: List[Operation] = []
    first = prices[0]
    state, operation = apply_buy(
        PortfolioState(), INITIAL_INVESTMENT, initial_investment, first.price, first.timestamp
    )
    ledger.append(operation)

    for current, (_, _, events) in zip(prices[1:], windows):
        price = current.price

        if monthly_investment > 0:
            state, operation = apply_buy(
                state, MONTHLY_INVESTMENT, monthly_investment, price, current.timestamp
            )
            ledger.append(operation)

        per_share = sum(event.amount_per_share for event in events)
        state, operation = apply_dividends(
            state, per_share, price, current.timestamp, reinvest_dividends
        )
        if operation is not None:
            ledger.append(operation)

    last_price = prices[-1].price
    return SimulationResult(
        ledger=tuple(ledger),
        summary=summarize(state, last_price),
        state=state,
        last_price=last_price,
    )
