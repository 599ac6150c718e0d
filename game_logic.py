import logging
import time
import uuid
from dataclasses import dataclass, asdict

from prizes import DEFAULT_CATALOG

MISS_OUTCOME = 'Miss ❌'

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280


class SeededRandom:
    """
    Reproducible stream of fractions in [0, 1) derived from a string seed.

    The seed is hashed with a 31-multiplier rolling hash over its UTF-16 code
    units (wrapped to a signed 32-bit integer, then made positive) and the
    stream is the linear congruential generator
    ``state = (state * 9301 + 49297) % 233280``. This is a fairness/audit
    mechanism, not a source of unpredictable numbers.
    """
    def __init__(self, seed):
        self.seed = seed
        self.state = self.hash_seed(seed)

    @staticmethod
    def hash_seed(seed):
        data = seed.encode('utf-16-le')
        value = 0
        for i in range(0, len(data), 2):
            code_unit = data[i] | (data[i + 1] << 8)
            value = (value * 31 + code_unit) & 0xFFFFFFFF
        if value >= 0x80000000:
            value -= 0x100000000
        return abs(value)

    def next(self):
        self.state = (self.state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return self.state / LCG_MODULUS


def generate_seed():
    """Wall-clock milliseconds followed by a random suffix"""
    return f"{int(time.time() * 1000)}{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class SpinResult:
    outcome: str
    cash_before: float
    cash_after: float
    cost: float
    profit: float
    seed: str
    timestamp: int
    prize_id: int = None

    @property
    def is_miss(self):
        return self.prize_id is None

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(
            outcome=data['outcome'],
            cash_before=data['cash_before'],
            cash_after=data['cash_after'],
            cost=data['cost'],
            profit=data['profit'],
            seed=data['seed'],
            timestamp=data['timestamp'],
            prize_id=data.get('prize_id')
        )


def get_eligible_prizes(cash, catalog=DEFAULT_CATALOG):
    """Prizes whose sale price is covered by ``cash``, in catalog order"""
    return [prize for prize in catalog.prizes if cash >= prize.sale_price]


def build_weights(cash, catalog=DEFAULT_CATALOG):
    """One weight per catalog prize (zero when not affordable), miss weight last"""
    eligible_ids = {prize.id for prize in get_eligible_prizes(cash, catalog)}
    weights = [prize.base_weight if prize.id in eligible_ids else 0 for prize in catalog.prizes]
    weights.append(catalog.miss_weight)
    return weights


def select_outcome(weights, random_value):
    """
    Index of the slot picked by ``random_value`` after normalizing ``weights``.

    Slots are scanned in order and the first one whose cumulative normalized
    weight reaches ``random_value`` wins, so ties go to the earlier slot. If
    rounding keeps the running sum below ``random_value`` the last slot (miss)
    is returned. Zero-weight slots are never selected, not even by a draw of 0.
    """
    total_weight = sum(weights)
    cumulative = 0
    for index, weight in enumerate(weights):
        cumulative += weight / total_weight
        if weight > 0 and random_value <= cumulative:
            return index

    logging.debug(f"Outcome selection fallback to last slot (random={random_value})")
    return len(weights) - 1


def calculate_probabilities(cash, catalog=DEFAULT_CATALOG):
    """Normalized draw probability of every catalog prize at ``cash``"""
    weights = build_weights(cash, catalog)
    total_weight = sum(weights)
    return [
        {'prize': prize, 'probability': weights[index] / total_weight}
        for index, prize in enumerate(catalog.prizes)
    ]


def miss_probability(cash, catalog=DEFAULT_CATALOG):
    weights = build_weights(cash, catalog)
    return weights[-1] / sum(weights)


def replay_spin(current_cash, seed, catalog=DEFAULT_CATALOG, timestamp=None):
    """
    Resolve one spin from ``current_cash`` using the draw derived from ``seed``.

    The stake is collected before eligibility is checked, so it counts toward
    unlocking a prize in the same spin. When nothing is affordable the spin is
    a miss and the RNG is not consulted. Running the same seed against the same
    starting cash always gives the same outcome, which is how stored spins are
    audited.
    """
    rng = SeededRandom(seed)
    if timestamp is None:
        timestamp = int(time.time() * 1000)

    cash_after_payment = current_cash + catalog.spin_price
    weights = build_weights(cash_after_payment, catalog)

    prize = None
    if sum(weights[:-1]) == 0:
        logging.debug(f"No prize affordable at {cash_after_payment} - forced miss")
    else:
        random_value = rng.next()
        selected_index = select_outcome(weights, random_value)
        if selected_index < len(catalog.prizes):
            prize = catalog.prizes[selected_index]
        logging.debug(f"Spin draw: random={random_value:.6f} -> slot {selected_index}")

    if prize is None:
        outcome = MISS_OUTCOME
        cost = 0
    else:
        outcome = prize.label
        cost = prize.unit_cost
    final_cash = cash_after_payment - cost

    return SpinResult(
        outcome=outcome,
        cash_before=current_cash,
        cash_after=final_cash,
        cost=cost,
        profit=catalog.spin_price - cost,
        seed=seed,
        timestamp=timestamp,
        prize_id=prize.id if prize is not None else None
    )


def perform_spin(current_cash, catalog=DEFAULT_CATALOG):
    """Resolve one spin with a freshly generated seed"""
    return replay_spin(current_cash, generate_seed(), catalog)
