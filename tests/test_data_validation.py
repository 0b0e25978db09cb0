"""
Data Validation Test Suite
Tests request parsing and the InvalidParameter errors it raises
"""

import unittest

from app import parse_amount, parse_flag, validate_request
from errors import InvalidParameter
from simulation import SimulationRequest


def valid_body(**overrides):
    body = {
        'stock_id': 7,
        'initial_investment': 1000,
        'investment_start': 1577836800,
        'monthly_investment': 100,
        'reinvest_dividends': True,
    }
    body.update(overrides)
    return body


class TestValidateRequest(unittest.TestCase):
    """Tests for validate_request()"""

    def assertInvalid(self, body, field):
        with self.assertRaises(InvalidParameter) as context:
            validate_request(body)
        self.assertEqual(context.exception.field, field)
        self.assertEqual(context.exception.to_dict()['field'], field)
        self.assertEqual(context.exception.to_dict()['error'], 'invalid_parameter')

    def test_valid_request(self):
        self.assertEqual(validate_request(valid_body()), SimulationRequest(
            security_id=7,
            initial_investment=1000.0,
            start_timestamp=1577836800,
            monthly_investment=100.0,
            reinvest_dividends=True,
        ))

    def test_numeric_strings_accepted(self):
        request = validate_request(valid_body(stock_id='7', investment_start='1577836800',
                                              initial_investment='1000.50'))
        self.assertEqual(request.security_id, 7)
        self.assertEqual(request.start_timestamp, 1577836800)
        self.assertEqual(request.initial_investment, 1000.5)

    def test_missing_stock_id(self):
        body = valid_body()
        del body['stock_id']
        self.assertInvalid(body, 'stock_id')

    def test_non_numeric_stock_id(self):
        self.assertInvalid(valid_body(stock_id='abc'), 'stock_id')

    def test_boolean_stock_id(self):
        self.assertInvalid(valid_body(stock_id=True), 'stock_id')

    def test_fractional_stock_id(self):
        self.assertInvalid(valid_body(stock_id=1.5), 'stock_id')

    def test_zero_stock_id(self):
        self.assertInvalid(valid_body(stock_id=0), 'stock_id')
        self.assertInvalid(valid_body(stock_id='0'), 'stock_id')

    def test_negative_stock_id(self):
        self.assertInvalid(valid_body(stock_id=-3), 'stock_id')

    def test_missing_investment_start(self):
        body = valid_body()
        del body['investment_start']
        self.assertInvalid(body, 'investment_start')

    def test_non_numeric_investment_start(self):
        self.assertInvalid(valid_body(investment_start='2020-01-01'), 'investment_start')

    def test_infinite_investment_start(self):
        self.assertInvalid(valid_body(investment_start=float('inf')), 'investment_start')

    def test_negative_initial_investment(self):
        self.assertInvalid(valid_body(initial_investment=-1), 'initial_investment')

    def test_nan_initial_investment(self):
        self.assertInvalid(valid_body(initial_investment='NaN'), 'initial_investment')

    def test_non_numeric_monthly_investment(self):
        self.assertInvalid(valid_body(monthly_investment='lots'), 'monthly_investment')

    def test_negative_monthly_investment(self):
        self.assertInvalid(valid_body(monthly_investment=-50), 'monthly_investment')

    def test_missing_amounts_default_to_zero(self):
        body = valid_body()
        del body['initial_investment']
        del body['monthly_investment']
        request = validate_request(body)
        self.assertEqual(request.initial_investment, 0.0)
        self.assertEqual(request.monthly_investment, 0.0)

    def test_empty_string_amount_is_zero(self):
        self.assertEqual(validate_request(valid_body(monthly_investment='')).monthly_investment, 0.0)

    def test_monthly_disabled_forces_zero(self):
        request = validate_request(valid_body(monthly_enabled=False, monthly_investment=500))
        self.assertEqual(request.monthly_investment, 0.0)

    def test_monthly_disabled_skips_monthly_validation(self):
        request = validate_request(valid_body(monthly_enabled='false', monthly_investment=-5))
        self.assertEqual(request.monthly_investment, 0.0)

    def test_reinvest_defaults_to_false(self):
        body = valid_body()
        del body['reinvest_dividends']
        self.assertFalse(validate_request(body).reinvest_dividends)

    def test_invalid_reinvest_flag(self):
        self.assertInvalid(valid_body(reinvest_dividends='maybe'), 'reinvest_dividends')

    def test_body_must_be_object(self):
        self.assertInvalid([1, 2, 3], 'body')


class TestParsers(unittest.TestCase):

    def test_parse_amount(self):
        self.assertEqual(parse_amount(None, 'x'), 0.0)
        self.assertEqual(parse_amount(0, 'x'), 0.0)
        self.assertEqual(parse_amount('250.5', 'x'), 250.5)

    def test_parse_amount_rejects_boolean(self):
        with self.assertRaises(InvalidParameter):
            parse_amount(True, 'x')

    def test_parse_flag_strings(self):
        for value in ('true', 'TRUE', '1', 'yes', 'on'):
            self.assertTrue(parse_flag(value, 'x'))
        for value in ('false', '0', 'no', 'off', ''):
            self.assertFalse(parse_flag(value, 'x'))

    def test_parse_flag_numbers(self):
        self.assertTrue(parse_flag(1, 'x'))
        self.assertFalse(parse_flag(0, 'x'))
        with self.assertRaises(InvalidParameter):
            parse_flag(2, 'x')

    def test_parse_flag_default(self):
        self.assertTrue(parse_flag(None, 'x', default=True))
        self.assertFalse(parse_flag(None, 'x'))


if __name__ == '__main__':
    unittest.main()
