import json
import math
import logging
from dataclasses import dataclass

SPIN_PRICE = 2


class CatalogError(ValueError):
    """Raised when a prize catalog cannot be used by the engine"""


@dataclass(frozen=True)
class Prize:
    id: int
    name: str
    emoji: str
    sale_price: float
    unit_cost: float
    base_weight: float

    @property
    def label(self):
        return f"{self.name} {self.emoji}".strip()

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'emoji': self.emoji,
            'sale_price': self.sale_price,
            'unit_cost': self.unit_cost,
            'base_weight': self.base_weight
        }


def validate_prize_data(data):
    """Validate prize data structure"""
    required_fields = ['id', 'name', 'sale_price', 'unit_cost', 'base_weight']
    for field in required_fields:
        if field not in data:
            return False, f"Missing required field: {field}"

    if not isinstance(data['id'], int) or isinstance(data['id'], bool):
        return False, "Id must be an integer"

    if not isinstance(data['name'], str) or not data['name'].strip():
        return False, "Name must be a non-empty string"

    for field in ['sale_price', 'unit_cost']:
        value = data[field]
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return False, f"{field} must be a non-negative number"
        if not math.isfinite(value) or value < 0:
            return False, f"{field} must be a non-negative number"

    weight = data['base_weight']
    if not isinstance(weight, (int, float)) or isinstance(weight, bool) or not 0 <= weight <= 1:
        return False, "base_weight must be a number between 0 and 1"

    return True, None


class Catalog:
    """
    Ordered, immutable set of prizes plus the per-spin stake.

    The miss weight is the probability mass left over by the prizes and is
    computed once here; the draw and the odds queries both read it from the
    catalog instead of summing the weights again.
    """
    def __init__(self, prizes, spin_price=SPIN_PRICE):
        self._prizes = tuple(prizes)
        self._spin_price = spin_price
        self._validate()
        self._miss_weight = 1 - sum(p.base_weight for p in self._prizes)

    def _validate(self):
        if not isinstance(self._spin_price, (int, float)) or self._spin_price < 0:
            raise CatalogError(f"Spin price must be a non-negative number, got {self._spin_price!r}")

        seen_ids = set()
        for prize in self._prizes:
            is_valid, error_msg = validate_prize_data(prize.to_dict())
            if not is_valid:
                raise CatalogError(f"Invalid prize {prize.name!r}: {error_msg}")
            if prize.id in seen_ids:
                raise CatalogError(f"Duplicate prize id: {prize.id}")
            seen_ids.add(prize.id)

        total_weight = sum(p.base_weight for p in self._prizes)
        if total_weight >= 1:
            raise CatalogError(
                f"Prize weights sum to {total_weight:.5f}; they must leave a positive miss weight"
            )

    @property
    def prizes(self):
        return self._prizes

    @property
    def spin_price(self):
        return self._spin_price

    @property
    def miss_weight(self):
        return self._miss_weight

    def get_prize(self, prize_id):
        return next((p for p in self._prizes if p.id == prize_id), None)

    def __len__(self):
        return len(self._prizes)

    def __iter__(self):
        return iter(self._prizes)

    def to_dict(self):
        return {
            'spin_price': self._spin_price,
            'miss_weight': self._miss_weight,
            'prizes': [p.to_dict() for p in self._prizes]
        }


def load_catalog(filename, spin_price=None):
    """Build a catalog from a JSON list of prize objects"""
    try:
        with open(filename, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (IOError, json.JSONDecodeError) as e:
        raise CatalogError(f"Cannot read prize catalog '{filename}': {e}") from e

    if not isinstance(data, list):
        raise CatalogError(f"Prize catalog '{filename}' must contain a list of prizes")

    prizes = []
    for entry in data:
        if not isinstance(entry, dict):
            raise CatalogError(f"Prize entries must be objects, got {entry!r}")
        is_valid, error_msg = validate_prize_data(entry)
        if not is_valid:
            raise CatalogError(f"Invalid prize in '{filename}': {error_msg}")
        prizes.append(Prize(
            id=entry['id'],
            name=entry['name'].strip(),
            emoji=entry.get('emoji', ''),
            sale_price=entry['sale_price'],
            unit_cost=entry['unit_cost'],
            base_weight=entry['base_weight']
        ))

    catalog = Catalog(prizes, SPIN_PRICE if spin_price is None else spin_price)
    logging.info(f"🎁 Loaded {len(catalog)} prizes from '{filename}' (miss weight {catalog.miss_weight:.5f})")
    return catalog


DEFAULT_PRIZES = (
    Prize(id=0, name='Birra', emoji='🍺', sale_price=3, unit_cost=1, base_weight=0.14000),
    Prize(id=1, name='Spritz', emoji='🍹', sale_price=5, unit_cost=2.50, base_weight=0.05600),
    Prize(id=2, name='Shot', emoji='🥃', sale_price=3, unit_cost=0.60, base_weight=0.23300),
    Prize(id=3, name='Drink', emoji='🍸', sale_price=8, unit_cost=8, base_weight=0.01750),
    Prize(id=4, name='2 Drink Promo', emoji='🍻', sale_price=15, unit_cost=4, base_weight=0.03500),
    Prize(id=5, name='Gin Mare', emoji='🍋', sale_price=100, unit_cost=30, base_weight=0.00467),
    Prize(id=6, name='Belvedere Vodka', emoji='🍾', sale_price=100, unit_cost=30, base_weight=0.00467),
    Prize(id=7, name='Grey Goose Vodka', emoji='🥂', sale_price=100, unit_cost=30, base_weight=0.00467),
    Prize(id=8, name='Veuve Clicquot', emoji='🥂', sale_price=130, unit_cost=50, base_weight=0.00280),
    Prize(id=9, name='Moët & Chandon', emoji='🍾', sale_price=150, unit_cost=50, base_weight=0.00280),
)

DEFAULT_CATALOG = Catalog(DEFAULT_PRIZES, SPIN_PRICE)
MISS_WEIGHT = DEFAULT_CATALOG.miss_weight
