from functools import wraps
import logging

from flask import Blueprint
from flask_jwt_extended import create_access_token, current_user, verify_jwt_in_request

from apotek import db, jwt
from apotek.errors import ApiError
from apotek.models import User
from apotek.utils import ok, get_json, parse_text

bp = Blueprint('auth', __name__, url_prefix='/api')

ALL_ROLES = ('admin', 'apoteker', 'kasir')
STAFF_ROLES = ('admin', 'apoteker')


@jwt.user_lookup_loader
def load_user(jwt_header, jwt_payload):
    # Pengguna dibaca ulang setiap request: akun yang dihapus langsung ditolak
    try:
        user_id = int(jwt_payload['sub'])
    except (KeyError, TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def roles_required(*roles):
    """Wajib token yang valid; jika `roles` diisi, peran pengguna harus termasuk di dalamnya."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if roles and current_user.role not in roles:
                raise ApiError("Anda tidak memiliki akses untuk fitur ini", 403)
            return fn(*args, **kwargs)
        return wrapper
    return decorator


login_required = roles_required()


def issue_token(user):
    return create_access_token(identity=str(user.id), additional_claims={"role": user.role})


@bp.route('/auth/login', methods=['POST'])
def login():
    data = get_json()
    username = parse_text(data.get('username'))
    password = data.get('password')
    if not username or not password or not isinstance(password, str):
        raise ApiError("Username dan password wajib diisi")

    user = User.query.filter_by(username=username).first()
    if not user or not user.check_password(password):
        logging.info(f"Login gagal untuk username '{username}'")
        raise ApiError("Kredensial tidak valid", 401)

    return ok({"user": user.profile(), "token": issue_token(user)})


@bp.route('/auth/me', methods=['GET'])
@login_required
def me():
    return ok({"user": current_user.profile()})
