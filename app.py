from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
import logging
import math
import os

from errors import (
    InvalidParameter,
    NoDataFromStart,
    NoPriceData,
    SecurityNotFound,
    SimulationError,
    StartBeforeAvailableRange,
)
from simulation import SimulationRequest, simulate
from store import (
    SEARCH_DEFAULT_LIMIT,
    SecurityDirectory,
    TimeSeriesStore,
    database_path_from_env,
)

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['DATABASE_PATH'] = database_path_from_env()

# ==============================================================================
# CONSTANTS
# ==============================================================================

TRUE_STRINGS = ('true', '1', 'yes', 'on')
FALSE_STRINGS = ('false', '0', 'no', 'off', '')

# ==============================================================================
# END CONSTANTS
# ==============================================================================


def get_security_directory():
    return SecurityDirectory(app.config['DATABASE_PATH'])


def get_time_series_store():
    return TimeSeriesStore(app.config['DATABASE_PATH'])


# ==============================================================================
# PARAMETER VALIDATION
# Each parser raises InvalidParameter naming the field it rejected
# ==============================================================================

def _parse_number(value, field):
    if isinstance(value, bool):
        raise InvalidParameter(field, f'{field} must be a number')
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameter(field, f'{field} must be a number')
    if not math.isfinite(number):
        raise InvalidParameter(field, f'{field} must be a finite number')
    return number


def _parse_integer(value, field, message):
    if value is None or value == '':
        raise InvalidParameter(field, message)
    number = _parse_number(value, field)
    if not number.is_integer():
        raise InvalidParameter(field, message)
    return int(number)


def parse_amount(value, field):
    """
    Parse a cash amount. Absent or empty values mean no contribution.

    Example:
        >>> parse_amount(None, 'monthly_investment')
        0.0
        >>> parse_amount('250.5', 'monthly_investment')
        250.5
    """
    if value is None or value == '':
        return 0.0
    amount = _parse_number(value, field)
    if amount < 0:
        raise InvalidParameter(field, f'{field} must be non-negative')
    return amount


def parse_flag(value, field, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in TRUE_STRINGS:
            return True
        if normalized in FALSE_STRINGS:
            return False
    raise InvalidParameter(field, f'{field} must be a boolean')


def validate_request(data):
    """
    Validate a calculate_investment request body.

    Args:
        data: Decoded JSON body with stock_id, initial_investment,
              investment_start, monthly_investment, monthly_enabled
              and reinvest_dividends

    Returns:
        SimulationRequest with normalized values

    Raises:
        InvalidParameter: First offending field
    """
    if not isinstance(data, dict):
        raise InvalidParameter('body', 'Request body must be a JSON object')

    security_id = _parse_integer(data.get('stock_id'), 'stock_id', 'stock_id is required')
    if security_id <= 0:
        raise InvalidParameter('stock_id', 'stock_id is required')
    start_timestamp = _parse_integer(
        data.get('investment_start'), 'investment_start',
        'investment_start must be epoch seconds'
    )
    initial_investment = parse_amount(data.get('initial_investment'), 'initial_investment')

    # Monthly contribution only counts when the caller has it enabled
    monthly_enabled = parse_flag(data.get('monthly_enabled'), 'monthly_enabled', default=True)
    monthly_investment = 0.0
    if monthly_enabled:
        monthly_investment = parse_amount(data.get('monthly_investment'), 'monthly_investment')

    reinvest = parse_flag(data.get('reinvest_dividends'), 'reinvest_dividends')

    return SimulationRequest(
        security_id=security_id,
        initial_investment=initial_investment,
        start_timestamp=start_timestamp,
        monthly_investment=monthly_investment,
        reinvest_dividends=reinvest,
    )


# ==============================================================================
# END PARAMETER VALIDATION
# ==============================================================================


def resolve_range(store, security_id, start_timestamp):
    """
    Load the price and dividend series a simulation runs over.

    Args:
        store: TimeSeriesStore (or any object with the same lookups)
        security_id: Security to load
        start_timestamp: Requested first investment timestamp

    Returns:
        Tuple of (prices, dividends)

    Raises:
        NoPriceData: The security has no stored prices at all
        StartBeforeAvailableRange: start precedes the earliest stored price
        NoDataFromStart: No price point at or after start
    """
    earliest = store.get_earliest_price_timestamp(security_id)
    if earliest is None:
        raise NoPriceData(security_id)
    if start_timestamp < earliest:
        raise StartBeforeAvailableRange(earliest)

    prices = store.get_prices_from(security_id, start_timestamp)
    if not prices:
        raise NoDataFromStart()
    dividends = store.get_dividends_from(security_id, start_timestamp)
    return prices, dividends


def run_investment_simulation(sim_request, directory, store):
    """
    Resolve, load and simulate one validated request.

    Returns:
        Response dict with parameters, summary (including security) and ledger
    """
    security = directory.resolve_security(sim_request.security_id)
    if security is None:
        raise SecurityNotFound(sim_request.security_id)

    prices, dividends = resolve_range(store, sim_request.security_id, sim_request.start_timestamp)
    result = simulate(
        prices,
        dividends,
        initial_investment=sim_request.initial_investment,
        monthly_investment=sim_request.monthly_investment,
        reinvest_dividends=sim_request.reinvest_dividends,
    )
    logger.info("Simulated stock %s over %d price points: %d operations",
                security.id, len(prices), len(result.ledger))

    return {
        'parameters': sim_request.to_dict(),
        'summary': result.summary.to_dict(security=security),
        'ledger': [operation.to_dict() for operation in result.ledger],
    }


# ==============================================================================
# HTTP LAYER
# ==============================================================================

@app.errorhandler(SimulationError)
def handle_simulation_error(error):
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unhandled error while serving %s", request.path)
    return jsonify({'error': 'internal_error'}), 500


@app.route('/api/health')
def health():
    return jsonify({'ok': True})


@app.route('/api/stock_infos/search')
def search_stock_infos():
    query = request.args.get('q', '').strip()
    if not query:
        return jsonify({'items': []})

    try:
        limit = int(request.args.get('limit', SEARCH_DEFAULT_LIMIT))
    except ValueError:
        limit = SEARCH_DEFAULT_LIMIT
    if limit <= 0:
        limit = SEARCH_DEFAULT_LIMIT

    items = get_security_directory().search_securities(query, limit=limit)
    return jsonify({'items': items})


@app.route('/api/calculate_investment', methods=['POST'])
def calculate_investment():
    data = request.get_json(silent=True)
    sim_request = validate_request(data if data is not None else {})
    result = run_investment_simulation(
        sim_request, get_security_directory(), get_time_series_store()
    )
    return jsonify(result)


if __name__ == '__main__':
    logging.basicConfig(
        level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    # Production-ready configuration with environment variables
    port = int(os.environ.get('PORT', 8080))
    debug = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    app.run(debug=debug, host='0.0.0.0', port=port)
