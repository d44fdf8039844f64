from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session
from werkzeug.security import check_password_hash

from extensions import db
from models import Profile

auth_bp = Blueprint('auth', __name__)

# Roles that pass every role check.
SUPERVISOR_ROLES = ('admin', 'owner')


def current_principal():
    user_id = session.get('user_id')
    if user_id is None:
        return None
    return db.session.get(Profile, user_id)


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_principal() is None:
            return jsonify({"message": "Authentication required"}), 401
        return f(*args, **kwargs)
    return decorated_function


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            principal = current_principal()
            if principal is None:
                return jsonify({"message": "Authentication required"}), 401
            if not principal.has_role(*roles, *SUPERVISOR_ROLES):
                return jsonify({"message": "You do not have permission to perform this action"}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def profile_to_dict(profile):
    return {
        "id": profile.id,
        "username": profile.username,
        "full_name": profile.full_name,
        "phone": profile.phone,
        "roles": profile.role_names,
    }


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True)

    if not isinstance(data, dict):
        return jsonify({"message": "Request body must be JSON"}), 400

    username = data.get('username')
    password = data.get('password')

    if not username:
        return jsonify({"message": "Username is required"}), 400
    if not password:
        return jsonify({"message": "Password is required"}), 400

    profile = Profile.query.filter_by(username=username).first()

    if profile and check_password_hash(profile.password_hash, password):
        session.clear()
        session['user_id'] = profile.id
        current_app.logger.info("User %s logged in", profile.username)
        return jsonify({"message": "Login successful", "user": profile_to_dict(profile)}), 200

    current_app.logger.info("Rejected login for %r", username)
    return jsonify({"message": "Invalid username or password"}), 401


@auth_bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({"message": "Logged out"}), 200


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify(profile_to_dict(current_principal())), 200
