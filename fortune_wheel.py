import base64
import logging
import math
import threading
import traceback
from datetime import datetime
from io import BytesIO

import qrcode
from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit

from game_logic import (
    MISS_OUTCOME,
    calculate_probabilities,
    get_eligible_prizes,
    miss_probability,
    replay_spin,
)
from game_state import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_STATE_FILE,
    MAX_SIMULATIONS,
    GameSession,
    load_json_file,
    simulate_session,
)
from prizes import DEFAULT_CATALOG, load_catalog

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - [%(name)s] - %(message)s',
    handlers=[
        logging.FileHandler('fortune_wheel.log'),
        logging.StreamHandler()
    ]
)

DEFAULT_CONFIG = {
    'reveal_delay_seconds': 3,
    'history_limit': DEFAULT_HISTORY_LIMIT,
    'state_file': DEFAULT_STATE_FILE,
    'prizes_file': None,
    'host': '0.0.0.0',
    'port': 5000
}

app = Flask(__name__)
app.config.update(
    SECRET_KEY='fortune-wheel-cash-gating!',
    CONFIG_FILE='config.json'
)

socketio = SocketIO(app, cors_allowed_origins="*", ping_timeout=60, ping_interval=25)

game_session = None
session_lock = threading.Lock()
connected_clients = set()


def get_config():
    """Wheel configuration from the config file, missing keys filled from defaults"""
    config = load_json_file(app.config['CONFIG_FILE'], dict(DEFAULT_CONFIG),
                            is_valid=lambda data: isinstance(data, dict))
    return {**DEFAULT_CONFIG, **config}


def get_game_session():
    """The process-wide session, created from the configuration on first use"""
    global game_session
    with session_lock:
        if game_session is None:
            config = get_config()
            catalog = load_catalog(config['prizes_file']) if config['prizes_file'] else DEFAULT_CATALOG
            game_session = GameSession(
                filename=config['state_file'],
                catalog=catalog,
                history_limit=config['history_limit']
            )
            logging.info(f"🎪 Session ready: {len(catalog)} prizes, spin price {catalog.spin_price}, "
                         f"miss weight {catalog.miss_weight:.5f}")
        return game_session


def parse_cash(value):
    """Parse an optional cash amount; raises ValueError on garbage"""
    if value is None or value == '':
        return None
    cash = float(value)
    if not math.isfinite(cash):
        raise ValueError(f"Invalid cash amount: {value!r}")
    return cash


def get_dashboard_state():
    session = get_game_session()
    return {
        **session.to_dict(),
        'status': session.get_status(),
        'connected_clients': len(connected_clients)
    }


def trigger_spin_flow(source='unknown', user_data=None):
    """
    Run one spin for the session and announce it to connected clients.

    The result is folded into the game state and saved before anything is
    emitted. The reveal delay only postpones ``spin_complete``.
    Returns the SpinResult, or None if the spin was rejected or failed.
    """
    session = get_game_session()
    if not session.start_spin(source):
        logging.warning(f"🔄 Spin from '{source}' BLOCKED: wheel is busy")
        socketio.emit('spin_rejected', {
            'reason': 'wheel_busy',
            'message': 'Wheel is currently spinning. Please wait.',
            'source': source,
            'current_state': session.get_status(),
            'timestamp': datetime.now().isoformat()
        })
        return None

    logging.info(f"🎲 Spin ACCEPTED from: {source} {f'({user_data})' if user_data else ''}")

    try:
        result = session.spin()
    except Exception as e:
        logging.error(f"💥 Spin flow error: {e}")
        logging.error(f"🔍 Full traceback: {traceback.format_exc()}")
        socketio.emit('spin_error', {
            'message': f'Spin failed: {str(e)}',
            'error_type': 'server_error'
        })
        session.end_spin()
        return None

    reveal_delay = get_config().get('reveal_delay_seconds', 0)

    socketio.emit('spin_started', {
        'result': result.to_dict(),
        'is_miss': result.is_miss,
        'spin_number': session.session_spins,
        'source': source,
        'reveal_delay': reveal_delay * 1000
    })

    def complete_spin():
        session.end_spin()
        socketio.emit('spin_complete', {
            'result': result.to_dict(),
            'is_miss': result.is_miss,
            'cash': session.state.cash
        })
        socketio.emit('state_update', get_dashboard_state())

    if reveal_delay > 0:
        socketio.start_background_task(lambda: (socketio.sleep(reveal_delay), complete_spin()))
    else:
        complete_spin()
    return result


# ==============================================================================
# API ENDPOINTS
# ==============================================================================

@app.route('/api/spin', methods=['POST'])
def trigger_spin_api():
    """Spin the wheel for the current session"""
    try:
        session = get_game_session()
        if session.is_spinning:
            logging.warning("📡 API spin BLOCKED: wheel is spinning")
            return jsonify({
                'success': False,
                'error': 'wheel_busy',
                'message': 'Wheel is currently spinning. Please wait for it to complete.',
                'wheel_status': session.get_status()
            }), 409

        data = request.get_json(silent=True) or {}
        user_info = data.get('user_info', 'api_client')
        result = trigger_spin_flow(source='rest_api', user_data=user_info)

        if result is None:
            return jsonify({
                'success': False,
                'error': 'spin_rejected',
                'message': 'Spin was rejected by the server (wheel may be busy)',
                'wheel_status': session.get_status()
            }), 409

        return jsonify({
            'success': True,
            'result': result.to_dict(),
            'is_miss': result.is_miss,
            'state': session.to_dict()['state']
        })
    except Exception as e:
        logging.error(f"💥 API spin trigger error: {e}")
        return jsonify({'success': False, 'error': 'server_error', 'message': str(e)}), 500


@app.route('/api/spin/status')
def get_spin_status():
    try:
        status = get_game_session().get_status()
        status['connected_clients'] = len(connected_clients)
        status['timestamp'] = datetime.now().isoformat()
        return jsonify(status)
    except Exception as e:
        logging.error(f"💥 Spin status error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/spin/verify', methods=['POST'])
def verify_spin():
    """Replay a recorded seed against its starting cash"""
    data = request.get_json(silent=True) or {}
    seed = data.get('seed')
    if not isinstance(seed, str) or not seed:
        return jsonify({'error': 'Bad request', 'message': 'seed must be a non-empty string'}), 400

    session = get_game_session()
    try:
        recorded = next((r for r in session.state.spin_history if r.seed == seed), None)
        cash_before = parse_cash(data.get('cash_before'))
        if cash_before is None:
            if recorded is None:
                return jsonify({'error': 'Bad request',
                                'message': 'cash_before is required for seeds not in the history'}), 400
            cash_before = recorded.cash_before
    except (TypeError, ValueError) as e:
        return jsonify({'error': 'Bad request', 'message': str(e)}), 400

    try:
        replayed = replay_spin(cash_before, seed, session.catalog,
                               timestamp=recorded.timestamp if recorded else None)
        matches = None
        if recorded is not None:
            matches = (replayed.outcome == recorded.outcome
                       and replayed.cash_after == recorded.cash_after
                       and recorded.cash_before == cash_before)
            if not matches:
                logging.warning(f"🚨 Seed {seed} does not reproduce its recorded outcome")
        return jsonify({
            'result': replayed.to_dict(),
            'recorded': recorded.to_dict() if recorded else None,
            'matches': matches
        })
    except Exception as e:
        logging.error(f"💥 Verify spin error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/state', methods=['GET'])
def get_state():
    try:
        return jsonify(get_dashboard_state())
    except Exception as e:
        logging.error(f"💥 Game state error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/state', methods=['DELETE'])
def reset_state():
    """Reset balance and history (the previous state file is backed up)"""
    try:
        session = get_game_session()
        if not session.reset():
            return jsonify({
                'success': False,
                'error': 'wheel_busy',
                'message': 'Cannot reset while the wheel is spinning.'
            }), 409

        socketio.emit('state_update', get_dashboard_state())
        return jsonify({'success': True, 'message': 'Game reset successfully'})
    except Exception as e:
        logging.error(f"💥 Reset state error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/prizes')
def get_prizes():
    """Catalog with the eligibility of each prize at a balance"""
    session = get_game_session()
    try:
        cash = parse_cash(request.args.get('cash'))
    except ValueError as e:
        return jsonify({'error': 'Bad request', 'message': str(e)}), 400

    try:
        if cash is None:
            cash = session.state.cash
        catalog = session.catalog
        next_spin_cash = cash + catalog.spin_price
        eligible_ids = {p.id for p in get_eligible_prizes(cash, catalog)}
        next_spin_ids = {p.id for p in get_eligible_prizes(next_spin_cash, catalog)}
        return jsonify({
            'cash': cash,
            'next_spin_cash': next_spin_cash,
            'spin_price': catalog.spin_price,
            'miss_weight': catalog.miss_weight,
            'prizes': [{**p.to_dict(), 'label': p.label, 'eligible': p.id in eligible_ids,
                        'next_spin_eligible': p.id in next_spin_ids}
                       for p in catalog.prizes],
            'eligible_count': len(eligible_ids)
        })
    except Exception as e:
        logging.error(f"💥 Get prizes error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/odds')
def get_odds():
    """Draw probabilities for the next spin (stake included) or at an explicit balance"""
    session = get_game_session()
    try:
        cash = parse_cash(request.args.get('cash'))
    except ValueError as e:
        return jsonify({'error': 'Bad request', 'message': str(e)}), 400

    try:
        catalog = session.catalog
        if cash is None:
            cash = session.state.cash + catalog.spin_price
        probabilities = calculate_probabilities(cash, catalog)
        return jsonify({
            'cash': cash,
            'prizes': [{'id': entry['prize'].id, 'name': entry['prize'].label,
                        'probability': entry['probability']} for entry in probabilities],
            'miss': {'name': MISS_OUTCOME, 'probability': miss_probability(cash, catalog)}
        })
    except Exception as e:
        logging.error(f"💥 Odds error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/odds/simulate', methods=['POST'])
def simulate_spins():
    """Simulate a run of sequential spins without touching the session"""
    data = request.get_json(silent=True) or {}
    try:
        num_simulations = min(int(data.get('simulations', 1000)), MAX_SIMULATIONS)
        start_cash = parse_cash(data.get('start_cash')) or 0
    except (TypeError, ValueError) as e:
        return jsonify({'error': 'Bad request', 'message': str(e)}), 400
    if num_simulations <= 0:
        return jsonify({'error': 'Bad request', 'message': 'simulations must be positive'}), 400

    try:
        results = simulate_session(num_simulations, start_cash, get_game_session().catalog)
        logging.info(f"📊 Simulated {num_simulations} spins: profit {results['total_profit']:.2f}")
        return jsonify(results)
    except Exception as e:
        logging.error(f"💥 Simulation error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/qr_code')
def generate_qr_code():
    """QR code pointing players at the wheel"""
    try:
        url = request.host_url

        qr = qrcode.QRCode(version=1, box_size=10, border=5)
        qr.add_data(url)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format='PNG')
        img_str = base64.b64encode(buffer.getvalue()).decode()

        return jsonify({
            'qr_code': f"data:image/png;base64,{img_str}",
            'url': url
        })
    except Exception as e:
        logging.error(f"💥 QR Code generation failed: {e}")
        return jsonify({'error': 'Failed to generate QR code'}), 500


# ==============================================================================
# SOCKET.IO EVENT HANDLERS
# ==============================================================================

@socketio.on('connect')
def handle_connect(auth=None):
    try:
        connected_clients.add(request.sid)
        logging.info(f"🔌 Client connected: {request.sid} (Total: {len(connected_clients)})")
        emit('state_update', get_dashboard_state())
    except Exception as e:
        logging.error(f"💥 Connect handler error: {e}")


@socketio.on('disconnect')
def handle_disconnect(*args):
    connected_clients.discard(request.sid)
    logging.info(f"🔌 Client disconnected: {request.sid} (Remaining: {len(connected_clients)})")


@socketio.on('spin')
def handle_web_spin_request(data=None):
    """Spin requested from the browser; same flow as the REST endpoint"""
    try:
        user_info = data.get('user_info', 'anonymous') if isinstance(data, dict) else 'web_client'
        logging.info(f"🌐 Web spin request from client {request.sid}: {user_info}")
        if trigger_spin_flow(source='web_interface', user_data=user_info) is None:
            logging.warning(f"🌐 Web spin from {request.sid} was rejected")
    except Exception as e:
        logging.error(f"💥 Web spin request error: {e}")
        emit('spin_error', {'message': f'Spin request failed: {str(e)}'})


@socketio.on('request_state_update')
def handle_state_request():
    try:
        emit('state_update', get_dashboard_state())
    except Exception as e:
        logging.error(f"💥 State request error: {e}")


# ==============================================================================
# ERROR HANDLERS
# ==============================================================================

@app.errorhandler(500)
def internal_error(error):
    logging.error(f"💥 Internal server error: {error}")
    return jsonify({'error': 'Internal server error', 'message': str(error)}), 500


@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Not found', 'message': 'Endpoint not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'error': 'Method not allowed', 'message': str(error)}), 405


@app.errorhandler(400)
def bad_request(error):
    return jsonify({'error': 'Bad request', 'message': str(error)}), 400


if __name__ == '__main__':
    config = get_config()
    try:
        get_game_session()

        logging.info("🎰 FORTUNE WHEEL - CASH GATING EDITION 🎰")
        logging.info("=" * 60)
        logging.info(f"🎲 Spin:         http://{config['host']}:{config['port']}/api/spin")
        logging.info(f"🎁 Prizes:       http://{config['host']}:{config['port']}/api/prizes")
        logging.info(f"🎯 Odds:         http://{config['host']}:{config['port']}/api/odds")
        logging.info(f"📊 State:        http://{config['host']}:{config['port']}/api/state")
        logging.info(f"📱 QR Code API:  http://{config['host']}:{config['port']}/api/qr_code")
        logging.info("=" * 60)

        socketio.run(app, host=config['host'], port=config['port'],
                     debug=False, allow_unsafe_werkzeug=True)
    except KeyboardInterrupt:
        logging.info("🛑 Server shutdown requested")
    except Exception as e:
        logging.error(f"💥 Server startup failed: {e}")
        raise
