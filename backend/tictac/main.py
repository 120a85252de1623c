import secrets

from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user

from .auth import issue_credential
from .models import db, User

main = Blueprint('main', __name__)


def _session_payload(user, status=200):
    return jsonify({"success": True, "user": user.to_dict(), "token": issue_credential(user)}), status


@main.route('/login', methods=['POST', 'OPTIONS'])
def login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    identifier = data.get('email') or data.get('username')
    user = None
    if identifier:
        user = User.query.filter(
            (User.email == identifier.lower()) | (User.username == identifier)
        ).filter_by(is_anonymous_user=False).first()
    if user and user.check_password(data.get('password') or ''):
        login_user(user)
        return _session_payload(user)
    return jsonify({"success": False, "message": "Invalid credentials"}), 401


@main.route('/register', methods=['POST', 'OPTIONS'])
def register():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not (3 <= len(username) <= 30) or not email or len(password) < 6:
        return jsonify({"success": False, "message": "Username (3-30 chars), email and password (6+ chars) are required"}), 400
    if User.query.filter((User.username == username) | (User.email == email)).first():
        return jsonify({"success": False, "message": "User already exists"}), 400

    new_user = User(username=username, email=email)
    new_user.set_password(password)
    db.session.add(new_user)
    db.session.commit()
    login_user(new_user)
    return _session_payload(new_user, 201)


@main.route('/guest', methods=['POST', 'OPTIONS'])
def guest():
    """Create a throwaway guest account so anonymous players still get a distinct id."""
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    base = (data.get('username') or '').strip()[:20] or secrets.token_hex(3)
    username = f"Guest_{base}"
    if User.query.filter_by(username=username).first():
        username = f"{username}_{secrets.token_hex(2)}"
    user = User(username=username, is_anonymous_user=True)
    db.session.add(user)
    db.session.commit()
    login_user(user)
    return _session_payload(user, 201)


@main.route('/check_login', methods=['GET', 'OPTIONS'])
def check_login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200

    @login_required
    def protected_check():
        return jsonify({"success": True, "user": current_user.to_dict()})

    return protected_check()


@main.route('/logout', methods=['POST', 'OPTIONS'])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})
