"""
Error taxonomy for investment simulation requests.

Every error here is detected before the simulation starts, so a request
either fails with one of these or produces a complete ledger. Each error
carries a machine-readable ``kind`` and the HTTP status the API maps it to.
"""


class SimulationError(Exception):
    """Base class for reportable, caller-correctable simulation failures."""

    kind = 'simulation_error'
    status_code = 400
    default_message = 'Simulation request could not be processed'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        payload = {'error': self.kind, 'message': self.message}
        payload.update(self.details)
        return payload


class InvalidParameter(SimulationError):
    kind = 'invalid_parameter'
    default_message = 'Invalid request parameter'

    def __init__(self, field, message=None):
        super().__init__(message or f'{field} is invalid', field=field)
        self.field = field


class SecurityNotFound(SimulationError):
    kind = 'security_not_found'
    status_code = 404
    default_message = 'stock not found'

    def __init__(self, security_id):
        super().__init__(f'stock {security_id} not found', stock_id=security_id)


class NoPriceData(SimulationError):
    kind = 'no_price_data'
    default_message = 'no price data for stock'

    def __init__(self, security_id):
        super().__init__(f'no price data for stock {security_id}', stock_id=security_id)


class StartBeforeAvailableRange(SimulationError):
    """Start precedes the first stored price; retry with ``earliest`` as the start."""

    kind = 'start_before_available_range'
    default_message = 'investment_start is before the earliest available price'

    def __init__(self, earliest):
        super().__init__(earliest_investment_start=earliest)
        self.earliest = earliest


class NoDataFromStart(SimulationError):
    kind = 'no_data_from_start'
    default_message = 'no price data from start date'
