"""
Test the moving-average price tracker.
"""
import unittest

from subnet_amm.amm_state import Mechanism, PoolState
from subnet_amm.crypto import derive_pool_address
from subnet_amm.fixed_point import PRECISION
from subnet_amm.price_tracker import PriceTracker


def make_state(base, quote):
    return PoolState({
        'netuid': 7,
        'mechanism': Mechanism.CONSTANT_PRODUCT,
        'minimum_pool_liquidity': 0,
        'controller_address': b'\x01' * 20,
        'owner_contract_address': b'\x02' * 20,
        'creator_address': b'\x03' * 20,
        'pool_address': derive_pool_address(7),
        'base_reserve': base,
        'quote_reserve_in': quote,
    })


class TestPriceTracker(unittest.TestCase):
    def setUp(self):
        self.tracker = PriceTracker(halving_period=1000)
        self.state = make_state(50_000, 100_000)

    def test_alpha(self):
        self.assertEqual(self.tracker.alpha(0), 0)
        self.assertEqual(self.tracker.alpha(1000), PRECISION // 2)
        self.assertLess(self.tracker.alpha(1), self.tracker.alpha(10))

    def test_first_observation_initialises_average(self):
        self.assertTrue(self.tracker.refresh(self.state, 10))
        self.assertEqual(self.state.current_price, PRECISION // 2)
        self.assertEqual(self.state.moving_average_price, PRECISION // 2)
        self.assertEqual(self.state.last_price_update_height, 10)

    def test_same_height_is_noop(self):
        self.tracker.refresh(self.state, 10)
        self.state.base_reserve = 100_000

        self.assertFalse(self.tracker.refresh(self.state, 10))
        self.assertEqual(self.state.moving_average_price, PRECISION // 2)
        # The instantaneous price still follows the reserves
        self.assertEqual(self.state.current_price, PRECISION)

    def test_blend_after_one_halving_period(self):
        self.tracker.refresh(self.state, 10)
        self.state.base_reserve = 100_000

        self.assertTrue(self.tracker.refresh(self.state, 1010))
        self.assertEqual(self.state.moving_average_price, 3 * PRECISION // 4)
        self.assertEqual(self.state.last_price_update_height, 1010)

    def test_price_capped_at_parity(self):
        self.tracker.refresh(self.state, 10)
        self.state.base_reserve = 200_000

        self.tracker.refresh(self.state, 1010)
        self.assertEqual(self.state.current_price, 2 * PRECISION)
        self.assertEqual(self.state.moving_average_price, 3 * PRECISION // 4)

    def test_empty_quote_reserve_leaves_average_unset(self):
        state = make_state(50_000, 0)
        self.assertFalse(self.tracker.refresh(state, 10))
        self.assertIsNone(state.moving_average_price)
        self.assertEqual(state.current_price, 0)

    def test_invalid_halving_period(self):
        with self.assertRaises(ValueError):
            PriceTracker(halving_period=0)


if __name__ == '__main__':
    unittest.main()
