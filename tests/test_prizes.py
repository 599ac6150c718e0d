import json
import os
import tempfile
import unittest

from prizes import (
    DEFAULT_CATALOG,
    DEFAULT_PRIZES,
    MISS_WEIGHT,
    SPIN_PRICE,
    Catalog,
    CatalogError,
    Prize,
    load_catalog,
    validate_prize_data,
)


class TestPrizeCatalog(unittest.TestCase):

    def test_default_catalog_constants(self):
        self.assertEqual(SPIN_PRICE, 2)
        self.assertEqual(len(DEFAULT_CATALOG), 10)
        self.assertEqual(DEFAULT_CATALOG.spin_price, SPIN_PRICE)
        self.assertEqual([p.id for p in DEFAULT_CATALOG], list(range(10)))

    def test_miss_weight_is_complement_of_base_weights(self):
        expected = 1 - sum(p.base_weight for p in DEFAULT_PRIZES)
        self.assertEqual(MISS_WEIGHT, expected)
        self.assertEqual(DEFAULT_CATALOG.miss_weight, MISS_WEIGHT)
        self.assertAlmostEqual(MISS_WEIGHT, 0.49889, places=5)
        self.assertGreater(MISS_WEIGHT, 0)

    def test_prize_label(self):
        self.assertEqual(DEFAULT_PRIZES[0].label, 'Birra 🍺')
        self.assertEqual(Prize(1, 'Plain', '', 1, 1, 0.1).label, 'Plain')

    def test_prizes_are_immutable(self):
        with self.assertRaises(AttributeError):
            DEFAULT_PRIZES[0].sale_price = 0
        self.assertIsInstance(DEFAULT_CATALOG.prizes, tuple)

    def test_get_prize(self):
        self.assertEqual(DEFAULT_CATALOG.get_prize(4).name, '2 Drink Promo')
        self.assertIsNone(DEFAULT_CATALOG.get_prize(99))

    def test_weights_summing_to_one_are_rejected(self):
        prizes = [Prize(0, 'A', '', 1, 1, 0.6), Prize(1, 'B', '', 1, 1, 0.4)]
        with self.assertRaises(CatalogError):
            Catalog(prizes, 2)

    def test_weights_above_one_are_rejected(self):
        with self.assertRaises(CatalogError):
            Catalog([Prize(0, 'A', '', 1, 1, 0.7), Prize(1, 'B', '', 1, 1, 0.7)], 2)

    def test_catalog_error_is_value_error(self):
        self.assertTrue(issubclass(CatalogError, ValueError))

    def test_duplicate_ids_are_rejected(self):
        with self.assertRaises(CatalogError):
            Catalog([Prize(0, 'A', '', 1, 1, 0.1), Prize(0, 'B', '', 1, 1, 0.1)], 2)

    def test_negative_values_are_rejected(self):
        with self.assertRaises(CatalogError):
            Catalog([Prize(0, 'A', '', -1, 1, 0.1)], 2)
        with self.assertRaises(CatalogError):
            Catalog([Prize(0, 'A', '', 1, -1, 0.1)], 2)
        with self.assertRaises(CatalogError):
            Catalog([Prize(0, 'A', '', 1, 1, 0.1)], -2)

    def test_empty_catalog_misses_always(self):
        catalog = Catalog([], 2)
        self.assertEqual(catalog.miss_weight, 1)

    def test_validate_prize_data(self):
        valid = {'id': 1, 'name': 'Shot', 'sale_price': 3, 'unit_cost': 0.6, 'base_weight': 0.2}
        self.assertEqual(validate_prize_data(valid), (True, None))

        is_valid, error = validate_prize_data({k: v for k, v in valid.items() if k != 'unit_cost'})
        self.assertFalse(is_valid)
        self.assertIn('unit_cost', error)

        is_valid, error = validate_prize_data({**valid, 'base_weight': 1.5})
        self.assertFalse(is_valid)
        self.assertIn('base_weight', error)

        is_valid, error = validate_prize_data({**valid, 'name': '  '})
        self.assertFalse(is_valid)
        self.assertIn('Name', error)

        is_valid, _ = validate_prize_data({**valid, 'id': '1'})
        self.assertFalse(is_valid)

    def test_non_finite_prices_are_rejected(self):
        valid = {'id': 1, 'name': 'Shot', 'sale_price': 3, 'unit_cost': 0.6, 'base_weight': 0.2}
        for field in ['sale_price', 'unit_cost']:
            for value in [float('nan'), float('inf'), float('-inf')]:
                is_valid, error = validate_prize_data({**valid, field: value})
                self.assertFalse(is_valid, f"{field}={value}")
                self.assertIn(field, error)

        with self.assertRaises(CatalogError):
            Catalog([Prize(0, 'A', '', float('nan'), 1, 0.1)], 2)



class TestLoadCatalog(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.filename = os.path.join(self.tmpdir.name, 'prizes.json')

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, data):
        with open(self.filename, 'w', encoding='utf-8') as f:
            if isinstance(data, str):
                f.write(data)
            else:
                json.dump(data, f)

    def test_load_valid_catalog(self):
        self.write([
            {'id': 7, 'name': 'Beer', 'emoji': '🍺', 'sale_price': 3, 'unit_cost': 1, 'base_weight': 0.5}
        ])
        catalog = load_catalog(self.filename, spin_price=2)
        self.assertEqual(len(catalog), 1)
        self.assertEqual(catalog.prizes[0].label, 'Beer 🍺')
        self.assertEqual(catalog.miss_weight, 0.5)
        self.assertEqual(catalog.spin_price, 2)

    def test_default_spin_price(self):
        self.write([{'id': 1, 'name': 'X', 'sale_price': 1, 'unit_cost': 1, 'base_weight': 0.1}])
        self.assertEqual(load_catalog(self.filename).spin_price, SPIN_PRICE)

    def test_invalid_json_raises(self):
        self.write('{not json')
        with self.assertRaises(CatalogError):
            load_catalog(self.filename)

    def test_missing_file_raises(self):
        with self.assertRaises(CatalogError):
            load_catalog(os.path.join(self.tmpdir.name, 'missing.json'))

    def test_non_list_raises(self):
        self.write({'prizes': []})
        with self.assertRaises(CatalogError):
            load_catalog(self.filename)

    def test_invalid_weights_raise_at_load(self):
        self.write([
            {'id': 1, 'name': 'A', 'sale_price': 1, 'unit_cost': 1, 'base_weight': 0.5},
            {'id': 2, 'name': 'B', 'sale_price': 1, 'unit_cost': 1, 'base_weight': 0.5}
        ])
        with self.assertRaises(CatalogError):
            load_catalog(self.filename)

    def test_nan_price_raises_at_load(self):
        # json accepts the bare NaN / Infinity literals
        self.write('[{"id": 1, "name": "A", "sale_price": NaN, "unit_cost": 1, "base_weight": 0.1}]')
        with self.assertRaises(CatalogError):
            load_catalog(self.filename)
        self.write('[{"id": 1, "name": "A", "sale_price": 1, "unit_cost": Infinity, "base_weight": 0.1}]')
        with self.assertRaises(CatalogError):
            load_catalog(self.filename)


if __name__ == '__main__':
    unittest.main()
