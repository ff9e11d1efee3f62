import logging
import re

from flask import Blueprint, request
from flask_jwt_extended import current_user
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from apotek import db
from apotek.auth import roles_required, login_required, STAFF_ROLES
from apotek.commands import ensure_db
from apotek.errors import ApiError, Conflict
from apotek.models import (User, Supplier, Product, TransactionItem, PrescriptionMedication, Employee, Payroll,
                           Expense, CollectionRecord, PaymentRecord, ROLES, EMPLOYEE_STATUSES)
from apotek.utils import (ok, get_json, require_fields, get_or_404, apply_patch, parse_text, parse_required_text,
                          parse_number, parse_int, parse_bool, parse_date, parse_required_date, parse_choice,
                          date_range_args, filter_date_range)

bp = Blueprint('api', __name__, url_prefix='/api')

PERIOD_PATTERN = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')


@bp.route('/init', methods=['GET'])
def init():
    ensure_db()
    return ok()


# ===================================================================
# USERS API (khusus admin)
# ===================================================================

def parse_password(value, field):
    value = value or ''
    if not str(value).strip():
        raise ApiError("password tidak boleh kosong")
    return str(value)


@bp.route('/users', methods=['GET'])
@roles_required('admin')
def list_users():
    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return ok([u.to_dict() for u in users])


@bp.route('/users/<int:user_id>', methods=['GET'])
@roles_required('admin')
def get_user(user_id):
    return ok(get_or_404(User, user_id, "Pengguna tidak ditemukan").to_dict())


@bp.route('/users', methods=['POST'])
@roles_required('admin')
def add_user():
    data = get_json()
    require_fields(data, 'username', 'password', 'role')
    role = parse_choice(ROLES)(data['role'], 'role')
    username = parse_required_text(data['username'], 'username')

    if User.query.filter_by(username=username).first():
        raise Conflict("Username sudah digunakan")
    try:
        user = User(username=username, role=role, name=parse_text(data.get('name')))
        user.set_password(parse_password(data['password'], 'password'))
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Username sudah digunakan")
    logging.info(f"User {username} ({role}) dibuat oleh {current_user.username}")
    return ok(user.to_dict(), 201)


@bp.route('/users/<int:user_id>', methods=['PUT'])
@roles_required('admin')
def update_user(user_id):
    user = get_or_404(User, user_id, "Pengguna tidak ditemukan")
    data = get_json()
    if data.get('password') == '':
        data.pop('password')
    changed = apply_patch(user, data, {
        'name': lambda v, f: parse_text(v),
        'role': parse_choice(ROLES),
    })
    if 'password' in data:
        user.set_password(parse_password(data['password'], 'password'))
        changed += 1
    if not changed:
        raise ApiError("Tidak ada data untuk diperbarui")
    db.session.commit()
    return ok(user.to_dict())


@bp.route('/users/<int:user_id>', methods=['DELETE'])
@roles_required('admin')
def delete_user(user_id):
    user = get_or_404(User, user_id, "Pengguna tidak ditemukan")
    if user.id == current_user.id:
        raise ApiError("Tidak dapat menghapus akun yang sedang digunakan")
    db.session.delete(user)
    db.session.commit()
    return ok()


# ===================================================================
# SUPPLIER API
# ===================================================================

SUPPLIER_FIELDS = {
    'name': parse_required_text,
    'contact': lambda v, f: parse_text(v),
    'address': lambda v, f: parse_text(v),
    'phone': lambda v, f: parse_text(v),
    'email': lambda v, f: parse_text(v),
}


@bp.route('/suppliers', methods=['GET'])
@login_required
def list_suppliers():
    query = Supplier.query
    q = request.args.get('q')
    if q:
        query = query.filter(Supplier.name.ilike(f"%{q}%"))
    suppliers = query.order_by(Supplier.created_at.desc()).all()
    return ok([s.to_dict() for s in suppliers])


@bp.route('/suppliers/<string:supplier_id>', methods=['GET'])
@login_required
def get_supplier(supplier_id):
    return ok(get_or_404(Supplier, supplier_id, "Supplier tidak ditemukan").to_dict())


@bp.route('/suppliers', methods=['POST'])
@roles_required(*STAFF_ROLES)
def add_supplier():
    data = get_json()
    require_fields(data, 'name')
    supplier = Supplier()
    apply_patch(supplier, data, SUPPLIER_FIELDS)
    db.session.add(supplier)
    db.session.commit()
    return ok(supplier.to_dict(), 201)


@bp.route('/suppliers/<string:supplier_id>', methods=['PUT'])
@roles_required(*STAFF_ROLES)
def update_supplier(supplier_id):
    supplier = get_or_404(Supplier, supplier_id, "Supplier tidak ditemukan")
    if not apply_patch(supplier, get_json(), SUPPLIER_FIELDS):
        raise ApiError("Tidak ada perubahan")
    db.session.commit()
    return ok(supplier.to_dict())


@bp.route('/suppliers/<string:supplier_id>', methods=['DELETE'])
@roles_required(*STAFF_ROLES)
def delete_supplier(supplier_id):
    supplier = get_or_404(Supplier, supplier_id, "Supplier tidak ditemukan")
    if Product.query.filter_by(supplier_id=supplier_id).first():
        raise Conflict("Gagal menghapus: Supplier masih dipakai oleh produk.")
    db.session.delete(supplier)
    db.session.commit()
    return ok()


# ===================================================================
# PRODUK API
# ===================================================================

def parse_supplier_ref(value, field):
    supplier_id = parse_text(value)
    if supplier_id and db.session.get(Supplier, supplier_id) is None:
        raise ApiError("Supplier tidak ditemukan")
    return supplier_id


PRODUCT_FIELDS = {
    'name': parse_required_text,
    'category': lambda v, f: parse_text(v),
    'stock': lambda v, f: parse_int(v if v not in (None, '') else 0, f, minimum=0),
    'min_stock': lambda v, f: parse_int(v if v not in (None, '') else 0, f, minimum=0),
    'price': lambda v, f: parse_number(v, f, minimum=0),
    'buy_price': lambda v, f: parse_number(v, f, minimum=0),
    'expiry_date': parse_date,
    'requires_prescription': parse_bool,
    'supplier_id': parse_supplier_ref,
    'description': lambda v, f: parse_text(v),
}


@bp.route('/products', methods=['GET'])
@login_required
def list_products():
    args = request.args
    query = Product.query.options(joinedload(Product.supplier))

    if 'requires_prescription' in args:
        query = query.filter(Product.requires_prescription == parse_bool(args['requires_prescription']))
    if parse_bool(args.get('inStock')):
        query = query.filter(Product.stock > 0)
    if parse_bool(args.get('lowStock')):
        query = query.filter(Product.stock <= Product.min_stock)
    if args.get('category'):
        query = query.filter(Product.category == args['category'])
    if args.get('supplier_id'):
        query = query.filter(Product.supplier_id == args['supplier_id'])
    if args.get('q'):
        pattern = f"%{args['q']}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.category.ilike(pattern)))

    products = query.order_by(Product.created_at.desc()).all()
    return ok([p.to_dict() for p in products])


@bp.route('/products/<string:product_id>', methods=['GET'])
@login_required
def get_product(product_id):
    return ok(get_or_404(Product, product_id, "Produk tidak ditemukan").to_dict())


@bp.route('/products', methods=['POST'])
@roles_required(*STAFF_ROLES)
def add_product():
    data = get_json()
    require_fields(data, 'name', 'price', 'buy_price')
    product = Product(stock=0, min_stock=0, requires_prescription=False)
    apply_patch(product, data, PRODUCT_FIELDS)
    db.session.add(product)
    db.session.commit()
    return ok(product.to_dict(), 201)


@bp.route('/products/<string:product_id>', methods=['PUT'])
@roles_required(*STAFF_ROLES)
def update_product(product_id):
    product = get_or_404(Product, product_id, "Produk tidak ditemukan")
    if not apply_patch(product, get_json(), PRODUCT_FIELDS):
        raise ApiError("Tidak ada perubahan")
    db.session.commit()
    return ok(product.to_dict())


@bp.route('/products/<string:product_id>', methods=['DELETE'])
@roles_required(*STAFF_ROLES)
def delete_product(product_id):
    product = get_or_404(Product, product_id, "Produk tidak ditemukan")
    if TransactionItem.query.filter_by(product_id=product_id).first():
        raise Conflict("Gagal menghapus: Produk sudah tercatat dalam transaksi.")
    if PrescriptionMedication.query.filter_by(product_id=product_id).first():
        raise Conflict("Gagal menghapus: Produk masih tercantum dalam resep.")
    db.session.delete(product)
    db.session.commit()
    return ok()


# ===================================================================
# KARYAWAN & GAJI API (khusus admin)
# ===================================================================

EMPLOYEE_FIELDS = {
    'name': parse_required_text,
    'position': parse_required_text,
    'base_salary': lambda v, f: parse_number(v, f, minimum=0),
    'bonus': lambda v, f: parse_number(v or 0, f, minimum=0),
    'start_date': parse_required_date,
    'status': parse_choice(EMPLOYEE_STATUSES),
}


@bp.route('/employees', methods=['GET'])
@roles_required('admin')
def list_employees():
    query = Employee.query
    if request.args.get('status'):
        query = query.filter(Employee.status == request.args['status'])
    employees = query.order_by(Employee.created_at.desc()).all()
    return ok([e.to_dict() for e in employees])


@bp.route('/employees/<string:employee_id>', methods=['GET'])
@roles_required('admin')
def get_employee(employee_id):
    return ok(get_or_404(Employee, employee_id, "Karyawan tidak ditemukan").to_dict())


@bp.route('/employees', methods=['POST'])
@roles_required('admin')
def add_employee():
    data = get_json()
    require_fields(data, 'name', 'position', 'base_salary', 'start_date')
    employee = Employee(bonus=0, status='active')
    apply_patch(employee, data, EMPLOYEE_FIELDS)
    db.session.add(employee)
    db.session.commit()
    return ok(employee.to_dict(), 201)


@bp.route('/employees/<string:employee_id>', methods=['PUT'])
@roles_required('admin')
def update_employee(employee_id):
    employee = get_or_404(Employee, employee_id, "Karyawan tidak ditemukan")
    if not apply_patch(employee, get_json(), EMPLOYEE_FIELDS):
        raise ApiError("Tidak ada perubahan")
    db.session.commit()
    return ok(employee.to_dict())


@bp.route('/employees/<string:employee_id>', methods=['DELETE'])
@roles_required('admin')
def delete_employee(employee_id):
    employee = get_or_404(Employee, employee_id, "Karyawan tidak ditemukan")
    if Payroll.query.filter_by(employee_id=employee_id).first():
        raise Conflict("Gagal menghapus: Karyawan sudah memiliki riwayat gaji. Ubah status menjadi 'inactive'.")
    db.session.delete(employee)
    db.session.commit()
    return ok()


def parse_employee_ref(value, field):
    employee_id = parse_required_text(value, field)
    if db.session.get(Employee, employee_id) is None:
        raise ApiError("Karyawan tidak ditemukan")
    return employee_id


def parse_period(value, field):
    value = parse_required_text(value, field)
    if not PERIOD_PATTERN.match(value):
        raise ApiError(f"Format {field} tidak valid (YYYY-MM)")
    return value


PAYROLL_FIELDS = {
    'employee_id': parse_employee_ref,
    'period_month': parse_period,
    'total_salary': lambda v, f: parse_number(v, f, minimum=0),
    'payment_date': parse_required_date,
    'notes': lambda v, f: parse_text(v),
}


@bp.route('/payrolls', methods=['GET'])
@roles_required('admin')
def list_payrolls():
    start, end = date_range_args()
    query = Payroll.query.options(joinedload(Payroll.employee))
    if request.args.get('employee_id'):
        query = query.filter(Payroll.employee_id == request.args['employee_id'])
    query = filter_date_range(query, Payroll.payment_date, start, end)
    payrolls = query.order_by(Payroll.payment_date.desc(), Payroll.created_at.desc()).all()
    return ok([p.to_dict() for p in payrolls])


@bp.route('/payrolls/<string:payroll_id>', methods=['GET'])
@roles_required('admin')
def get_payroll(payroll_id):
    return ok(get_or_404(Payroll, payroll_id, "Data gaji tidak ditemukan").to_dict())


@bp.route('/payrolls', methods=['POST'])
@roles_required('admin')
def add_payroll():
    data = get_json()
    require_fields(data, 'employee_id', 'period_month', 'total_salary', 'payment_date')
    payroll = Payroll()
    apply_patch(payroll, data, PAYROLL_FIELDS)
    db.session.add(payroll)
    db.session.commit()
    return ok(payroll.to_dict(), 201)


@bp.route('/payrolls/<string:payroll_id>', methods=['PUT'])
@roles_required('admin')
def update_payroll(payroll_id):
    payroll = get_or_404(Payroll, payroll_id, "Data gaji tidak ditemukan")
    if not apply_patch(payroll, get_json(), PAYROLL_FIELDS):
        raise ApiError("Tidak ada perubahan")
    db.session.commit()
    return ok(payroll.to_dict())


@bp.route('/payrolls/<string:payroll_id>', methods=['DELETE'])
@roles_required('admin')
def delete_payroll(payroll_id):
    payroll = get_or_404(Payroll, payroll_id, "Data gaji tidak ditemukan")
    db.session.delete(payroll)
    db.session.commit()
    return ok()


# ===================================================================
# PENGELUARAN API (khusus admin)
# ===================================================================

EXPENSE_FIELDS = {
    'category': parse_required_text,
    'description': parse_required_text,
    'amount': lambda v, f: parse_number(v, f, minimum=0),
    'date': parse_required_date,
}


@bp.route('/expenses', methods=['GET'])
@roles_required('admin')
def list_expenses():
    start, end = date_range_args()
    query = Expense.query
    if request.args.get('category'):
        query = query.filter(Expense.category == request.args['category'])
    query = filter_date_range(query, Expense.date, start, end)
    expenses = query.order_by(Expense.date.desc(), Expense.created_at.desc()).all()
    return ok([e.to_dict() for e in expenses])


@bp.route('/expenses/<string:expense_id>', methods=['GET'])
@roles_required('admin')
def get_expense(expense_id):
    return ok(get_or_404(Expense, expense_id, "Pengeluaran tidak ditemukan").to_dict())


@bp.route('/expenses', methods=['POST'])
@roles_required('admin')
def add_expense():
    data = get_json()
    require_fields(data, 'category', 'description', 'amount', 'date')
    expense = Expense(created_by=str(data.get('created_by') or current_user.id))
    apply_patch(expense, data, EXPENSE_FIELDS)
    db.session.add(expense)
    db.session.commit()
    return ok(expense.to_dict(), 201)


@bp.route('/expenses/<string:expense_id>', methods=['PUT'])
@roles_required('admin')
def update_expense(expense_id):
    expense = get_or_404(Expense, expense_id, "Pengeluaran tidak ditemukan")
    if not apply_patch(expense, get_json(), EXPENSE_FIELDS):
        raise ApiError("Tidak ada perubahan")
    db.session.commit()
    return ok(expense.to_dict())


@bp.route('/expenses/<string:expense_id>', methods=['DELETE'])
@roles_required('admin')
def delete_expense(expense_id):
    expense = get_or_404(Expense, expense_id, "Pengeluaran tidak ditemukan")
    db.session.delete(expense)
    db.session.commit()
    return ok()


# ===================================================================
# INKASO (collections) & BAYAR (payments) API (khusus admin)
# ===================================================================

LEDGER_FIELDS = {
    'date': parse_required_date,
    'amount': lambda v, f: parse_number(v, f, minimum=0),
}


def ledger_totals(start=None, end=None):
    inkaso = filter_date_range(db.session.query(db.func.sum(CollectionRecord.amount)),
                               CollectionRecord.date, start, end).scalar() or 0
    bayar = filter_date_range(db.session.query(db.func.sum(PaymentRecord.amount)),
                              PaymentRecord.date, start, end).scalar() or 0
    return {"inkaso": inkaso, "bayar": bayar, "tagihan": inkaso - bayar}


def register_ledger_routes(model, resource, label):
    def list_records():
        start, end = date_range_args()
        query = filter_date_range(model.query, model.date, start, end)
        records = query.order_by(model.date.desc(), model.created_at.desc()).all()
        return ok([r.to_dict() for r in records])

    def get_record(record_id):
        return ok(get_or_404(model, record_id, f"Data {label} tidak ditemukan").to_dict())

    def add_record():
        data = get_json()
        require_fields(data, 'date', 'amount')
        record = model()
        apply_patch(record, data, LEDGER_FIELDS)
        db.session.add(record)
        db.session.commit()
        return ok(record.to_dict(), 201)

    def update_record(record_id):
        record = get_or_404(model, record_id, f"Data {label} tidak ditemukan")
        if not apply_patch(record, get_json(), LEDGER_FIELDS):
            raise ApiError("Tidak ada perubahan")
        db.session.commit()
        return ok(record.to_dict())

    def delete_record(record_id):
        record = get_or_404(model, record_id, f"Data {label} tidak ditemukan")
        db.session.delete(record)
        db.session.commit()
        return ok()

    admin_only = roles_required('admin')
    bp.add_url_rule(f'/{resource}', f'list_{resource}', admin_only(list_records), methods=['GET'])
    bp.add_url_rule(f'/{resource}', f'add_{resource}', admin_only(add_record), methods=['POST'])
    bp.add_url_rule(f'/{resource}/<string:record_id>', f'get_{resource}', admin_only(get_record), methods=['GET'])
    bp.add_url_rule(f'/{resource}/<string:record_id>', f'update_{resource}', admin_only(update_record),
                    methods=['PUT'])
    bp.add_url_rule(f'/{resource}/<string:record_id>', f'delete_{resource}', admin_only(delete_record),
                    methods=['DELETE'])


register_ledger_routes(CollectionRecord, 'collections', 'inkaso')
register_ledger_routes(PaymentRecord, 'payments', 'pembayaran')


@bp.route('/collections/summary', methods=['GET'])
@roles_required('admin')
def ledger_summary():
    start, end = date_range_args()
    return ok(ledger_totals(start, end))


def _move_record(source_model, target_model, record_id, label):
    source = get_or_404(source_model, record_id, f"Data {label} tidak ditemukan")
    moved = target_model(date=source.date, amount=source.amount)
    db.session.add(moved)
    db.session.delete(source)
    db.session.commit()
    return moved


@bp.route('/collections/<string:record_id>/transfer', methods=['POST'])
@roles_required('admin')
def transfer_collection(record_id):
    """Inkaso yang sudah dibayar dipindahkan ke pembayaran."""
    payment = _move_record(CollectionRecord, PaymentRecord, record_id, 'inkaso')
    return ok(payment.to_dict(), 201)


@bp.route('/payments/<string:record_id>/reverse', methods=['POST'])
@roles_required('admin')
def reverse_payment(record_id):
    collection = _move_record(PaymentRecord, CollectionRecord, record_id, 'pembayaran')
    return ok(collection.to_dict(), 201)
