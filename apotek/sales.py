"""Resep dan transaksi penjualan.

Semua alur yang menulis lebih dari satu baris (header + item + stok + status
resep) dijalankan dalam satu sesi database dan di-commit sekali. Jika salah
satu langkah gagal, seluruhnya di-rollback.

Pengurangan stok selalu memakai satu UPDATE bersyarat
(``stock = stock - q WHERE stock >= q``) sehingga dua penjualan bersamaan
tidak bisa membuat stok negatif.
"""
from collections import OrderedDict
import datetime
import logging

from flask import Blueprint, request
from flask_jwt_extended import current_user
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from apotek import db
from apotek.auth import roles_required, login_required, STAFF_ROLES
from apotek.errors import ApiError, Conflict
from apotek.models import (Product, Prescription, PrescriptionMedication, Transaction, TransactionItem,
                           PRESCRIPTION_STATUSES, TRANSACTION_STATUSES, DISCOUNT_TYPES)
from apotek.utils import (ok, get_json, require_fields, get_or_404, apply_patch, parse_text, parse_required_text,
                          parse_number, parse_int, parse_date, parse_choice, date_range_args, filter_date_range,
                          round_money)

bp = Blueprint('sales', __name__, url_prefix='/api')


# ===================================================================
# PERHITUNGAN DISKON
# ===================================================================

def compute_total(subtotal, discount=0, discount_type='percentage'):
    """Kembalikan (nilai_diskon, total) untuk subtotal tertentu.

    percentage: total = subtotal * (1 - discount/100), 0 <= discount <= 100
    fixed:      total = max(0, subtotal - discount), discount >= 0
    """
    subtotal = float(subtotal or 0)
    discount = float(discount or 0)
    if discount_type not in DISCOUNT_TYPES:
        raise ApiError(f"discount_type harus salah satu dari: {', '.join(DISCOUNT_TYPES)}")
    if discount < 0:
        raise ApiError("Diskon tidak boleh negatif")

    if discount_type == 'percentage':
        if discount > 100:
            raise ApiError("Diskon persentase tidak boleh lebih dari 100")
        discount_amount = subtotal * discount / 100
    else:
        discount_amount = min(discount, subtotal)

    return round_money(discount_amount), round_money(max(0.0, subtotal - discount_amount))


def _recalculate(transaction):
    transaction.subtotal = round_money(sum(item.total for item in transaction.items))
    _, transaction.total = compute_total(transaction.subtotal, transaction.discount, transaction.discount_type)


def _check_client_total(transaction, data):
    # Total dari kasir hanya dicocokkan bila item dikirim pada request yang sama
    if data.get('total') is None or not data.get('items'):
        return
    claimed = parse_number(data['total'], 'total', minimum=0)
    if abs(claimed - transaction.total) > 0.01:
        raise ApiError(f"Total tidak sesuai perhitungan server ({transaction.total:.2f})")


# ===================================================================
# STOK & ITEM TRANSAKSI
# ===================================================================

def _prepare_items(raw_items):
    """Validasi item keranjang dan gabungkan kuantitas per produk.

    Mengembalikan OrderedDict product_id -> dict(product, quantity, price).
    """
    if not isinstance(raw_items, list):
        raise ApiError("items harus berupa daftar")

    prepared = OrderedDict()
    for index, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ApiError(f"Item ke-{index} tidak valid")
        product_id = parse_required_text(raw.get('product_id'), f"product_id (item ke-{index})")
        quantity = parse_int(raw.get('quantity'), f"quantity (item ke-{index})", minimum=1)

        product = db.session.get(Product, product_id)
        if product is None:
            raise ApiError(f"Produk pada item ke-{index} tidak ditemukan")

        if raw.get('price') is not None:
            price = parse_number(raw['price'], f"price (item ke-{index})", minimum=0)
        else:
            price = product.price

        if product_id in prepared:
            entry = prepared[product_id]
            if entry['price'] != price:
                raise ApiError(f"Harga {product.name} berbeda dalam satu transaksi")
            entry['quantity'] += quantity
        else:
            prepared[product_id] = {"product": product, "quantity": quantity, "price": price}
    return prepared


def _check_prescription(prepared, prescription):
    # Produk obat keras wajib ada di resep yang dipilih
    prescribed = set()
    if prescription is not None:
        prescribed = {m.product_id for m in prescription.medications}
    for entry in prepared.values():
        product = entry['product']
        if not product.requires_prescription:
            continue
        if prescription is None:
            raise ApiError(f"{product.name} memerlukan resep dokter")
        if product.id not in prescribed:
            raise ApiError(f"{product.name} tidak ada dalam resep yang dipilih")


def _decrement_stock(product, quantity):
    updated = db.session.query(Product).filter(
        Product.id == product.id,
        Product.stock >= quantity,
    ).update({Product.stock: Product.stock - quantity}, synchronize_session=False)
    if updated != 1:
        logging.info(f"Stok tidak mencukupi: {product.name} (diminta {quantity})")
        raise Conflict(f"Stok {product.name} tidak mencukupi")


def _restore_stock(items):
    for item in items:
        db.session.query(Product).filter(Product.id == item.product_id).update(
            {Product.stock: Product.stock + item.quantity}, synchronize_session=False)


def _add_items(transaction, prepared):
    for entry in prepared.values():
        product = entry['product']
        _decrement_stock(product, entry['quantity'])
        transaction.items.append(TransactionItem(
            product_id=product.id,
            product_name=product.name,
            quantity=entry['quantity'],
            price=entry['price'],
            buy_price=product.buy_price,
            total=round_money(entry['price'] * entry['quantity']),
        ))


def _parse_discount(data, transaction=None):
    discount = transaction.discount if transaction else 0
    discount_type = transaction.discount_type if transaction else 'percentage'
    if data.get('discount') is not None:
        discount = parse_number(data['discount'], 'discount', minimum=0)
    if data.get('discount_type') is not None:
        discount_type = parse_choice(DISCOUNT_TYPES)(data['discount_type'], 'discount_type')
    compute_total(0, discount, discount_type)
    return discount, discount_type


# ===================================================================
# ALUR TRANSAKSI
# ===================================================================

def create_transaction(cashier, data, idempotency_key=None):
    """Buat header, item, kurangi stok, dan tandai resep terpakai dalam satu unit kerja.

    Mengembalikan (transaction, created). Jika `idempotency_key` sudah pernah
    dipakai, transaksi lama dikembalikan tanpa menyentuh stok.
    """
    if idempotency_key:
        existing = Transaction.query.filter_by(idempotency_key=idempotency_key).first()
        if existing:
            logging.info(f"Permintaan transaksi diulang (key={idempotency_key}), tidak diproses ulang")
            return existing, False

    discount, discount_type = _parse_discount(data)
    status = parse_choice(TRANSACTION_STATUSES)(data.get('status') or 'completed', 'status')
    prepared = _prepare_items(data.get('items') or [])

    prescription = None
    prescription_id = parse_text(data.get('prescription_id'))
    if prescription_id:
        prescription = db.session.get(Prescription, prescription_id)
        if prescription is None:
            raise ApiError("Resep tidak ditemukan")
        if prescription.status != 'active':
            raise Conflict("Resep sudah digunakan")
    _check_prescription(prepared, prescription)

    try:
        transaction = Transaction(
            cashier_id=cashier.id,
            discount=discount,
            discount_type=discount_type,
            payment_method=parse_text(data.get('payment_method')) or 'cash',
            prescription_id=prescription_id,
            status=status,
            idempotency_key=idempotency_key,
        )
        db.session.add(transaction)
        _add_items(transaction, prepared)
        _recalculate(transaction)
        _check_client_total(transaction, data)
        if prescription is not None:
            prescription.status = 'used'
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if idempotency_key:
            existing = Transaction.query.filter_by(idempotency_key=idempotency_key).first()
            if existing:
                return existing, False
        raise
    except Exception:
        db.session.rollback()
        raise

    logging.info(f"Transaksi {transaction.id} dibuat oleh {cashier.username}: total {transaction.total}")
    return transaction, True


def add_transaction_items(transaction, raw_items):
    prepared = _prepare_items(raw_items)
    if not prepared:
        raise ApiError("Items tidak boleh kosong")
    _check_prescription(prepared, transaction.prescription)
    try:
        _add_items(transaction, prepared)
        _recalculate(transaction)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return transaction


def update_transaction(transaction, data):
    """Ubah header; jika `items` dikirim, setara dengan hapus item lama lalu buat ulang."""
    discount, discount_type = _parse_discount(data, transaction)
    prepared = None
    if 'items' in data:
        prepared = _prepare_items(data.get('items') or [])
        _check_prescription(prepared, transaction.prescription)

    try:
        transaction.discount = discount
        transaction.discount_type = discount_type
        apply_patch(transaction, data, {
            'payment_method': parse_required_text,
            'status': parse_choice(TRANSACTION_STATUSES),
        })
        if prepared is not None:
            # 1. kembalikan stok item lama, 2. hapus item lama, 3. item baru + kurangi stok
            _restore_stock(transaction.items)
            transaction.items.clear()
            db.session.flush()
            _add_items(transaction, prepared)
        _recalculate(transaction)
        _check_client_total(transaction, data)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return transaction


def delete_transaction(transaction):
    try:
        _restore_stock(transaction.items)
        db.session.delete(transaction)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ===================================================================
# TRANSAKSI API
# ===================================================================

def _transaction_query():
    return Transaction.query.options(joinedload(Transaction.items), joinedload(Transaction.cashier))


@bp.route('/transactions', methods=['GET'])
@login_required
def list_transactions():
    start, end = date_range_args()
    query = _transaction_query()
    if request.args.get('status'):
        query = query.filter(Transaction.status == request.args['status'])
    query = filter_date_range(query, Transaction.date, start, end, with_time=True)
    transactions = query.order_by(Transaction.date.desc()).all()
    return ok([t.to_dict() for t in transactions])


@bp.route('/transactions/<string:transaction_id>', methods=['GET'])
@login_required
def get_transaction(transaction_id):
    transaction = _transaction_query().filter(Transaction.id == transaction_id).first()
    if transaction is None:
        raise ApiError("Transaksi tidak ditemukan", 404)
    return ok(transaction.to_dict())


@bp.route('/transactions', methods=['POST'])
@login_required
def add_transaction():
    data = get_json()
    key = request.headers.get('Idempotency-Key') or parse_text(data.get('idempotency_key'))
    transaction, created = create_transaction(current_user, data, idempotency_key=key)
    return ok(transaction.to_dict(), 201 if created else 200)


@bp.route('/transactions/<string:transaction_id>/items', methods=['POST'])
@login_required
def add_items(transaction_id):
    transaction = get_or_404(Transaction, transaction_id, "Transaksi tidak ditemukan")
    # Kasir hanya boleh mengisi item transaksi miliknya yang masih kosong
    if current_user.role not in STAFF_ROLES:
        if transaction.cashier_id != current_user.id or transaction.items:
            raise ApiError("Anda tidak memiliki akses untuk fitur ini", 403)
    body = get_json(allow_list=True)
    raw_items = body if isinstance(body, list) else body.get('items', [])
    add_transaction_items(transaction, raw_items)
    return ok(transaction.to_dict(), 201)


@bp.route('/transactions/<string:transaction_id>', methods=['PUT'])
@roles_required(*STAFF_ROLES)
def edit_transaction(transaction_id):
    transaction = get_or_404(Transaction, transaction_id, "Transaksi tidak ditemukan")
    update_transaction(transaction, get_json())
    return ok(transaction.to_dict())


@bp.route('/transactions/<string:transaction_id>', methods=['DELETE'])
@roles_required(*STAFF_ROLES)
def remove_transaction(transaction_id):
    transaction = get_or_404(Transaction, transaction_id, "Transaksi tidak ditemukan")
    delete_transaction(transaction)
    logging.info(f"Transaksi {transaction_id} dihapus oleh {current_user.username}, stok dikembalikan")
    return ok()


# ===================================================================
# RESEP API
# ===================================================================

def _build_medications(raw_meds):
    if not isinstance(raw_meds, list):
        raise ApiError("medications harus berupa daftar")
    medications = []
    for index, raw in enumerate(raw_meds, start=1):
        if not isinstance(raw, dict):
            raise ApiError(f"Obat ke-{index} tidak valid")
        product_id = parse_required_text(raw.get('product_id'), f"product_id (obat ke-{index})")
        if db.session.get(Product, product_id) is None:
            raise ApiError(f"Produk pada obat ke-{index} tidak ditemukan")
        medications.append(PrescriptionMedication(
            product_id=product_id,
            quantity=parse_int(raw.get('quantity'), f"quantity (obat ke-{index})", minimum=1),
            dosage=parse_text(raw.get('dosage')) or '',
            instructions=parse_text(raw.get('instructions')) or '',
        ))
    return medications


def _require_active(prescription):
    if prescription.status != 'active':
        raise Conflict("Resep sudah digunakan dan tidak dapat diubah")


def _prescription_query():
    return Prescription.query.options(
        joinedload(Prescription.medications).joinedload(PrescriptionMedication.product))


PRESCRIPTION_FIELDS = {
    'doctor_name': parse_required_text,
    'patient_name': parse_required_text,
    'date': parse_date,
}


@bp.route('/prescriptions', methods=['GET'])
@login_required
def list_prescriptions():
    query = _prescription_query()
    if request.args.get('status'):
        query = query.filter(Prescription.status == request.args['status'])
    prescriptions = query.order_by(Prescription.created_at.desc()).all()
    return ok([p.to_dict() for p in prescriptions])


@bp.route('/prescriptions/<string:prescription_id>', methods=['GET'])
@login_required
def get_prescription(prescription_id):
    prescription = _prescription_query().filter(Prescription.id == prescription_id).first()
    if prescription is None:
        raise ApiError("Resep tidak ditemukan", 404)
    return ok(prescription.to_dict())


@bp.route('/prescriptions', methods=['POST'])
@roles_required(*STAFF_ROLES)
def add_prescription():
    data = get_json()
    require_fields(data, 'doctor_name', 'patient_name')
    prescription = Prescription(
        status='active',
        created_by=str(data.get('created_by') or current_user.id),
    )
    apply_patch(prescription, data, PRESCRIPTION_FIELDS)
    if prescription.date is None:
        prescription.date = datetime.date.today()
    prescription.medications = _build_medications(data.get('medications') or [])
    db.session.add(prescription)
    db.session.commit()
    return ok(prescription.to_dict(), 201)


@bp.route('/prescriptions/<string:prescription_id>/medications', methods=['POST'])
@roles_required(*STAFF_ROLES)
def add_medications(prescription_id):
    prescription = get_or_404(Prescription, prescription_id, "Resep tidak ditemukan")
    _require_active(prescription)
    body = get_json(allow_list=True)
    raw_meds = body if isinstance(body, list) else body.get('medications', [])
    if not raw_meds:
        raise ApiError("Medications tidak boleh kosong")
    prescription.medications.extend(_build_medications(raw_meds))
    db.session.commit()
    return ok(prescription.to_dict(), 201)


@bp.route('/prescriptions/<string:prescription_id>', methods=['PUT'])
@roles_required(*STAFF_ROLES)
def update_prescription(prescription_id):
    prescription = get_or_404(Prescription, prescription_id, "Resep tidak ditemukan")
    _require_active(prescription)
    data = get_json()
    changed = apply_patch(prescription, data, PRESCRIPTION_FIELDS)
    if 'medications' in data:
        # Diganti seluruhnya, bukan di-diff
        prescription.medications = _build_medications(data.get('medications') or [])
        changed += 1
    if not changed:
        raise ApiError("Tidak ada perubahan")
    db.session.commit()
    return ok(prescription.to_dict())


@bp.route('/prescriptions/<string:prescription_id>/status', methods=['PUT'])
@roles_required(*STAFF_ROLES)
def update_prescription_status(prescription_id):
    prescription = get_or_404(Prescription, prescription_id, "Resep tidak ditemukan")
    status = get_json().get('status')
    if not status:
        raise ApiError("status wajib diisi")
    if status not in PRESCRIPTION_STATUSES:
        raise ApiError(f"status harus salah satu dari: {', '.join(PRESCRIPTION_STATUSES)}")
    if status != 'used':
        raise ApiError("Resep yang sudah digunakan tidak dapat diaktifkan kembali")
    prescription.status = 'used'
    db.session.commit()
    return ok(prescription.to_dict())


@bp.route('/prescriptions/<string:prescription_id>', methods=['DELETE'])
@roles_required(*STAFF_ROLES)
def delete_prescription(prescription_id):
    prescription = get_or_404(Prescription, prescription_id, "Resep tidak ditemukan")
    if Transaction.query.filter_by(prescription_id=prescription_id).first():
        raise Conflict("Gagal menghapus: Resep sudah dipakai dalam transaksi.")
    db.session.delete(prescription)
    db.session.commit()
    return ok()
