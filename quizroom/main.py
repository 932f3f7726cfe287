from flask import Blueprint, current_app, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from .models import User

main = Blueprint('main', __name__)


def _preflight():
    return jsonify({'status': 'ok'}), 200


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the quiz room server!'})

@main.route('/login', methods=['POST', 'OPTIONS'])
def login():
    """Facilitator sign-in; players never log in, they join rooms by game id."""
    if request.method == 'OPTIONS':
        return _preflight()
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    facilitator = User.query.filter_by(username=username).first() if username else None
    if facilitator and facilitator.check_password(data.get('password') or ''):
        login_user(facilitator)
        current_app.logger.info(f"[login] facilitator={facilitator.username}")
        return jsonify({"success": True, "user": facilitator.to_dict()})
    current_app.logger.warning(f"[login-failed] username={username or '-'}")
    return jsonify({"success": False, "message": "Invalid credentials"}), 401

@main.route('/check_login', methods=['GET', 'OPTIONS'])
def check_login():
    if request.method == 'OPTIONS':
        return _preflight()

    @login_required
    def session_owner():
        return jsonify({"success": True, "user": current_user.to_dict()})

    return session_owner()

@main.route('/logout', methods=['POST', 'OPTIONS'])
@login_required
def logout():
    current_app.logger.info(f"[logout] facilitator={current_user.username}")
    logout_user()
    return jsonify({"success": True})
