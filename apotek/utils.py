import datetime
import math

from flask import jsonify, request

from apotek import db
from apotek.errors import ApiError, NotFound

DATE_FORMAT = '%Y-%m-%d'
SQLITE_MAX_INT = 2 ** 63 - 1


def ok(data=None, status=200):
    return jsonify({"ok": True, "data": data}), status


def get_json(allow_list=False):
    data = request.get_json(silent=True)
    if data is None:
        return [] if allow_list else {}
    if isinstance(data, list) and allow_list:
        return data
    if not isinstance(data, dict):
        raise ApiError("Body harus berupa objek JSON")
    return data


def require_fields(data, *fields):
    missing = [f for f in fields if data.get(f) is None or data.get(f) == '']
    if missing:
        raise ApiError(f"{', '.join(missing)} wajib diisi")


def get_or_404(model, obj_id, message="Data tidak ditemukan"):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise NotFound(message)
    return obj


# ===================================================================
# PARSER NILAI INPUT
# ===================================================================

def parse_text(value, field=None):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_required_text(value, field):
    value = parse_text(value)
    if not value:
        raise ApiError(f"{field} wajib diisi")
    return value


def parse_number(value, field, minimum=None, maximum=None):
    if isinstance(value, bool):
        raise ApiError(f"{field} harus berupa angka")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ApiError(f"{field} harus berupa angka")
    if not math.isfinite(number):
        raise ApiError(f"{field} harus berupa angka")
    if minimum is not None and number < minimum:
        raise ApiError(f"{field} tidak boleh kurang dari {minimum:g}")
    if maximum is not None and number > maximum:
        raise ApiError(f"{field} tidak boleh lebih dari {maximum:g}")
    return number


def parse_int(value, field, minimum=None):
    number = parse_number(value, field, minimum=minimum)
    if number != int(number):
        raise ApiError(f"{field} harus berupa bilangan bulat")
    if abs(int(number)) > SQLITE_MAX_INT:
        raise ApiError(f"{field} terlalu besar")
    return int(number)


def parse_bool(value, field=None):
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ('1', 'true', 'yes', 'ya', 'on')


def parse_date(value, field='tanggal'):
    if value is None or value == '':
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    try:
        if 'T' in text:
            # Tanggal-waktu ISO dari klien (mis. 2024-01-31T08:00:00.000Z)
            return datetime.datetime.fromisoformat(text.replace('Z', '+00:00')).date()
        return datetime.datetime.strptime(text, DATE_FORMAT).date()
    except ValueError:
        raise ApiError(f"Format {field} tidak valid (YYYY-MM-DD)")


def parse_required_date(value, field):
    parsed = parse_date(value, field)
    if parsed is None:
        raise ApiError(f"{field} wajib diisi")
    return parsed


def parse_choice(choices):
    def parser(value, field):
        if value not in choices:
            raise ApiError(f"{field} harus salah satu dari: {', '.join(choices)}")
        return value
    return parser


def apply_patch(obj, data, parsers):
    """Perbarui atribut yang ada di `data` saja. Mengembalikan jumlah field yang diubah."""
    changed = 0
    for field, parser in parsers.items():
        if field in data:
            setattr(obj, field, parser(data[field], field))
            changed += 1
    return changed


# ===================================================================
# FILTER TANGGAL
# ===================================================================

def date_range_args(args=None):
    args = request.args if args is None else args
    start = parse_date(args.get('from'), 'from')
    end = parse_date(args.get('to'), 'to')
    if start and end and start > end:
        raise ApiError("Tanggal awal tidak boleh setelah tanggal akhir")
    return start, end


def filter_date_range(query, column, start, end, with_time=False):
    # `end` inklusif sampai akhir hari
    if with_time:
        if start:
            query = query.filter(column >= datetime.datetime.combine(start, datetime.time.min))
        if end:
            query = query.filter(column < datetime.datetime.combine(end + datetime.timedelta(days=1), datetime.time.min))
    else:
        if start:
            query = query.filter(column >= start)
        if end:
            query = query.filter(column <= end)
    return query


def round_money(value):
    return round(float(value or 0) + 0.0, 2)
