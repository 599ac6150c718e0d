import json
import logging
import os
import shutil
import threading
import time
from datetime import datetime

from game_logic import SpinResult, perform_spin, get_eligible_prizes
from prizes import DEFAULT_CATALOG

STORAGE_KEY = 'fortune_wheel_state'
DEFAULT_STATE_FILE = 'game_state.json'
DEFAULT_HISTORY_LIMIT = 500
RECENT_ACTIVITY_SIZE = 10
MAX_SIMULATIONS = 10000

STATE_FIELDS = ('cash', 'total_spins', 'total_profit')

file_lock = threading.RLock()


def create_backup(filename):
    """Copy ``filename`` aside with a timestamp suffix; returns the copy's path"""
    if not os.path.exists(filename):
        return None
    backup_path = f"{filename}.{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.bak"
    try:
        shutil.copy2(filename, backup_path)
    except (IOError, OSError) as e:
        logging.error(f"💥 Backup of '{filename}' failed: {e}")
        return None
    logging.info(f"💾 Backup created: {backup_path}")
    return backup_path


def recover_json_file(filename, default_data, reason):
    """Set an unusable file aside and replace it with ``default_data``"""
    with file_lock:
        logging.error(f"🚨 '{filename}' is unusable ({reason}). Auto-recovering...")
        create_backup(filename)
        save_json_file(filename, default_data)
        return default_data


def load_json_file(filename, default_data, is_valid=None):
    """
    Read a JSON document, creating it from ``default_data`` when missing.

    Undecodable content, or content rejected by ``is_valid``, is backed up
    and replaced by the default.
    """
    with file_lock:
        if not os.path.exists(filename):
            save_json_file(filename, default_data)
            return default_data
        try:
            with open(filename, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            return recover_json_file(filename, default_data, f"corrupt JSON: {e}")
        except IOError as e:
            logging.error(f"💥 IO ERROR reading '{filename}': {e}")
            return default_data

        if is_valid is not None and not is_valid(data):
            return recover_json_file(filename, default_data, "unexpected structure")
        return data


def save_json_file(filename, data):
    """Write ``data`` through a temp file so readers never see a partial document"""
    temp_filename = f"{filename}.tmp"
    with file_lock:
        try:
            payload = json.dumps(data, indent=2, ensure_ascii=False)
            with open(temp_filename, 'w', encoding='utf-8') as f:
                f.write(payload)
            os.replace(temp_filename, filename)
        except (IOError, TypeError, ValueError) as e:
            logging.error(f"💥 Save error for '{filename}': {e}")
            try:
                os.remove(temp_filename)
            except OSError:
                pass
            return False
    logging.debug(f"💾 Saved {filename}")
    return True


class GameState:
    """
    Running balance and spin history of one player session.

    The engine never touches this object; callers fold each SpinResult in
    with apply_result() before the next spin reads ``cash``. Totals, costs
    and per-prize win counts are cumulative, while ``spin_history`` only
    keeps the newest ``history_limit`` results.
    """
    def __init__(self, cash=0, total_spins=0, total_profit=0, spin_history=None,
                 total_costs=0, prize_wins=None, history_limit=None):
        self.cash = cash
        self.total_spins = total_spins
        self.total_profit = total_profit
        self.total_costs = total_costs
        self.prize_wins = dict(prize_wins) if prize_wins else {}
        self.spin_history = list(spin_history) if spin_history else []
        self.history_limit = history_limit
        self._trim_history()

    @property
    def last_result(self):
        return self.spin_history[-1] if self.spin_history else None

    @property
    def total_wins(self):
        return sum(self.prize_wins.values())

    def _trim_history(self):
        if self.history_limit is not None and len(self.spin_history) > self.history_limit:
            del self.spin_history[:len(self.spin_history) - self.history_limit]

    def apply_result(self, result):
        self.cash = result.cash_after
        self.total_spins += 1
        self.total_profit += result.profit
        self.total_costs += result.cost
        if not result.is_miss:
            self.prize_wins[result.prize_id] = self.prize_wins.get(result.prize_id, 0) + 1
        self.spin_history.append(result)
        self._trim_history()

    def reset(self):
        self.cash = 0
        self.total_spins = 0
        self.total_profit = 0
        self.total_costs = 0
        self.prize_wins = {}
        self.spin_history = []

    def to_dict(self, history_limit=None):
        history = self.spin_history
        if history_limit is not None:
            history = history[-history_limit:] if history_limit > 0 else []
        return {
            'cash': self.cash,
            'total_spins': self.total_spins,
            'total_profit': self.total_profit,
            'total_costs': self.total_costs,
            'prize_wins': {str(prize_id): wins for prize_id, wins in self.prize_wins.items()},
            'spin_history': [r.to_dict() for r in history]
        }

    @classmethod
    def from_dict(cls, data, history_limit=None):
        history = [SpinResult.from_dict(r) for r in data.get('spin_history', [])]
        if 'prize_wins' in data:
            prize_wins = {int(prize_id): wins for prize_id, wins in data['prize_wins'].items()}
        else:
            prize_wins = {}
            for result in history:
                if not result.is_miss:
                    prize_wins[result.prize_id] = prize_wins.get(result.prize_id, 0) + 1
        return cls(
            cash=data['cash'],
            total_spins=data['total_spins'],
            total_profit=data['total_profit'],
            total_costs=data.get('total_costs', sum(r.cost for r in history)),
            prize_wins=prize_wins,
            spin_history=history,
            history_limit=history_limit
        )


def is_state_blob(data):
    """True when ``data`` holds a game state under the storage key"""
    if not isinstance(data, dict) or not isinstance(data.get(STORAGE_KEY), dict):
        return False
    state = data[STORAGE_KEY]
    return all(field in state for field in STATE_FIELDS) and isinstance(state.get('spin_history', []), list)


def load_game_state(filename=DEFAULT_STATE_FILE, history_limit=None):
    """Restore the persisted session, starting fresh if the blob is unusable"""
    default_blob = {STORAGE_KEY: GameState().to_dict()}
    data = load_json_file(filename, default_blob, is_valid=is_state_blob)
    try:
        state = GameState.from_dict(data[STORAGE_KEY], history_limit)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        recover_json_file(filename, default_blob, f"bad spin record: {e!r}")
        return GameState(history_limit=history_limit)

    logging.info(f"🔒 Game state restored: cash={state.cash}, spins={state.total_spins}, "
                 f"history={len(state.spin_history)}")
    return state


def save_game_state(state, filename=DEFAULT_STATE_FILE, history_limit=DEFAULT_HISTORY_LIMIT):
    return save_json_file(filename, {STORAGE_KEY: state.to_dict(history_limit)})


def calculate_statistics(state, catalog=DEFAULT_CATALOG):
    """Revenue, costs and per-prize results for a session, from its cumulative counters"""
    total_revenue = state.total_spins * catalog.spin_price
    profit_margin = (state.total_profit / total_revenue * 100) if total_revenue > 0 else 0
    eligible_ids = {p.id for p in get_eligible_prizes(state.cash, catalog)}

    prize_stats = []
    for prize in catalog.prizes:
        wins = state.prize_wins.get(prize.id, 0)
        revenue = wins * prize.sale_price
        costs = wins * prize.unit_cost
        prize_stats.append({
            'id': prize.id,
            'name': prize.label,
            'wins': wins,
            'revenue': revenue,
            'costs': costs,
            'profit': revenue - costs,
            'is_eligible': prize.id in eligible_ids
        })

    return {
        'cash': state.cash,
        'total_spins': state.total_spins,
        'total_revenue': total_revenue,
        'total_costs': state.total_costs,
        'total_profit': state.total_profit,
        'profit_margin': profit_margin,
        'win_rate': (state.total_wins / state.total_spins * 100) if state.total_spins else 0,
        'prize_stats': prize_stats,
        'recent_activity': [r.to_dict() for r in reversed(state.spin_history[-RECENT_ACTIVITY_SIZE:])]
    }


def simulate_session(simulations, start_cash=0, catalog=DEFAULT_CATALOG):
    """Run ``simulations`` sequential spins on a throw-away GameState"""
    simulations = max(0, min(int(simulations), MAX_SIMULATIONS))
    state = GameState(cash=start_cash, history_limit=RECENT_ACTIVITY_SIZE)
    for _ in range(simulations):
        state.apply_result(perform_spin(state.cash, catalog))

    stats = calculate_statistics(state, catalog)
    stats['simulations'] = simulations
    stats['start_cash'] = start_cash
    stats['misses'] = state.total_spins - state.total_wins
    return stats


class GameSession:
    """
    Thread-safe owner of the persisted GameState.

    Only one spin may be in flight: start_spin() claims the wheel and
    end_spin() releases it once the result has been announced.
    """
    def __init__(self, filename=DEFAULT_STATE_FILE, catalog=DEFAULT_CATALOG,
                 history_limit=DEFAULT_HISTORY_LIMIT):
        self.filename = filename
        self.catalog = catalog
        self.history_limit = history_limit
        self.state = load_game_state(filename, history_limit)
        self.is_spinning = False
        self.session_spins = 0
        self.spin_start_time = None
        self.last_spin_source = None
        self._lock = threading.Lock()

    def start_spin(self, source='unknown'):
        """Claim the wheel; False if a spin is already in progress"""
        with self._lock:
            if self.is_spinning:
                logging.debug(f"🔒 Spin blocked - already spinning (started by {self.last_spin_source})")
                return False

            self.is_spinning = True
            self.session_spins += 1
            self.spin_start_time = time.time()
            self.last_spin_source = source
            logging.info(f"🎲 Spin #{self.session_spins} STARTED from {source}")
            return True

    def end_spin(self):
        with self._lock:
            if self.is_spinning:
                duration = time.time() - self.spin_start_time if self.spin_start_time else 0
                logging.info(f"✅ Spin #{self.session_spins} COMPLETED (duration: {duration:.1f}s)")

            self.is_spinning = False
            self.spin_start_time = None

    def spin(self):
        """Resolve a spin against the current balance and persist the new state"""
        with self._lock:
            result = perform_spin(self.state.cash, self.catalog)
            self.state.apply_result(result)
            self.save()
        logging.info(f"🏆 Outcome: '{result.outcome}' | cash {result.cash_before} -> {result.cash_after} "
                     f"| profit {result.profit}")
        return result

    def reset(self):
        """Back up and clear the session; refused while a spin is in progress"""
        with self._lock:
            if self.is_spinning:
                logging.warning("🔄 Reset BLOCKED: wheel is spinning")
                return False
            create_backup(self.filename)
            self.state.reset()
            self.save()
        logging.info("🗑️ Game state reset")
        return True

    def save(self):
        return save_game_state(self.state, self.filename, self.history_limit)

    def get_status(self):
        with self._lock:
            last_result = self.state.last_result
            return {
                'is_spinning': self.is_spinning,
                'session_spins': self.session_spins,
                'last_spin_source': self.last_spin_source,
                'last_result': last_result.to_dict() if last_result else None,
                'spin_duration': time.time() - self.spin_start_time if self.spin_start_time else 0
            }

    def to_dict(self):
        with self._lock:
            return {
                'state': self.state.to_dict(self.history_limit),
                'statistics': calculate_statistics(self.state, self.catalog)
            }
