import logging

from flask import jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from apotek import db, jwt

SERVER_ERROR_MESSAGE = "Terjadi kesalahan pada server"


class ApiError(Exception):
    """Kesalahan yang sudah diperkirakan, dikirim ke klien apa adanya."""

    def __init__(self, message, status=400):
        super().__init__(message)
        self.message = message
        self.status = status


class NotFound(ApiError):
    def __init__(self, message="Data tidak ditemukan"):
        super().__init__(message, 404)


class Conflict(ApiError):
    def __init__(self, message):
        super().__init__(message, 409)


def error_response(message, status):
    return jsonify({"ok": False, "error": message}), status


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        db.session.rollback()
        return error_response(e.message, e.status)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        db.session.rollback()
        logging.warning(f"Integrity error: {e.orig}")
        detail = str(e.orig).upper()
        if 'UNIQUE' in detail or 'FOREIGN KEY' in detail:
            return error_response("Data bertentangan dengan data yang sudah ada", 409)
        # NOT NULL / CHECK: data yang dikirim tidak lengkap atau tidak valid
        return error_response("Data tidak valid", 400)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 404:
            return error_response("Endpoint tidak ditemukan", 404)
        if e.code == 405:
            return error_response("Metode tidak diizinkan", 405)
        if e.code == 400:
            return error_response("Permintaan tidak valid", 400)
        return error_response(e.description or e.name, e.code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logging.error(f"Unhandled error: {str(e)}", exc_info=e)
        return error_response(SERVER_ERROR_MESSAGE, 500)


# --- Respons JWT memakai amplop yang sama ---
@jwt.unauthorized_loader
def missing_token(reason):
    return error_response("Silakan login terlebih dahulu", 401)


@jwt.invalid_token_loader
def invalid_token(reason):
    return error_response("Token tidak valid", 401)


@jwt.expired_token_loader
def expired_token(jwt_header, jwt_payload):
    return error_response("Sesi telah berakhir, silakan login kembali", 401)


@jwt.user_lookup_error_loader
def unknown_token_user(jwt_header, jwt_payload):
    return error_response("Pengguna tidak ditemukan", 401)
