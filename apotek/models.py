import datetime
import sqlite3
import uuid

from sqlalchemy import event
from sqlalchemy.engine import Engine
from werkzeug.security import generate_password_hash, check_password_hash

from apotek import db

ROLES = ('admin', 'apoteker', 'kasir')
PRESCRIPTION_STATUSES = ('active', 'used')
TRANSACTION_STATUSES = ('completed', 'pending', 'cancelled')
DISCOUNT_TYPES = ('percentage', 'fixed')
EMPLOYEE_STATUSES = ('active', 'inactive')


def gen_id():
    return uuid.uuid4().hex


def _iso(value):
    return value.isoformat() if value else None


@event.listens_for(Engine, 'connect')
def _enable_sqlite_fk(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=datetime.datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.datetime.now, onupdate=datetime.datetime.now, nullable=False)


# ===================================================================
# DEFINISI MODEL DATABASE
# ===================================================================

class User(TimestampMixin, db.Model):
    __tablename__ = 'local_users'
    __table_args__ = (db.CheckConstraint("role IN ('admin','apoteker','kasir')", name='ck_user_role'),)
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(100), nullable=True)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "role": self.role,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def profile(self):
        return {"id": self.id, "username": self.username, "name": self.name, "role": self.role}

    def __repr__(self):
        return f'<User {self.username}>'


class Supplier(TimestampMixin, db.Model):
    __tablename__ = 'suppliers'
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    name = db.Column(db.String(150), nullable=False)
    contact = db.Column(db.String(100), nullable=True)
    address = db.Column(db.Text, nullable=True)
    phone = db.Column(db.String(30), nullable=True)
    email = db.Column(db.String(120), nullable=True)
    products = db.relationship('Product', backref='supplier', lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "contact": self.contact,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Product(TimestampMixin, db.Model):
    __tablename__ = 'products'
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    name = db.Column(db.String(150), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    price = db.Column(db.Float, nullable=False)
    buy_price = db.Column(db.Float, nullable=False)
    expiry_date = db.Column(db.Date, nullable=True)
    requires_prescription = db.Column(db.Boolean, nullable=False, default=False)
    supplier_id = db.Column(db.String(32), db.ForeignKey('suppliers.id'), nullable=True)
    description = db.Column(db.Text, nullable=True)

    @property
    def is_low_stock(self):
        return self.stock <= self.min_stock

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "price": self.price,
            "buy_price": self.buy_price,
            "expiry_date": _iso(self.expiry_date),
            "requires_prescription": bool(self.requires_prescription),
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Prescription(TimestampMixin, db.Model):
    __tablename__ = 'prescriptions'
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    doctor_name = db.Column(db.String(150), nullable=False)
    patient_name = db.Column(db.String(150), nullable=False)
    date = db.Column(db.Date, nullable=False, default=datetime.date.today)
    status = db.Column(db.String(20), nullable=False, default='active')
    created_by = db.Column(db.String(50), nullable=False)
    medications = db.relationship('PrescriptionMedication', backref='prescription', lazy=True,
                                  cascade="all, delete-orphan", order_by='PrescriptionMedication.created_at')

    def to_dict(self):
        return {
            "id": self.id,
            "doctor_name": self.doctor_name,
            "patient_name": self.patient_name,
            "date": _iso(self.date),
            "status": self.status,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "medications": [m.to_dict() for m in self.medications],
        }


class PrescriptionMedication(db.Model):
    __tablename__ = 'prescription_medications'
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    prescription_id = db.Column(db.String(32), db.ForeignKey('prescriptions.id', ondelete='CASCADE'), nullable=False)
    product_id = db.Column(db.String(32), db.ForeignKey('products.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    dosage = db.Column(db.String(100), nullable=False, default='')
    instructions = db.Column(db.String(255), nullable=False, default='')
    created_at = db.Column(db.DateTime, default=datetime.datetime.now, nullable=False)
    product = db.relationship('Product')

    def to_dict(self):
        return {
            "id": self.id,
            "prescription_id": self.prescription_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "dosage": self.dosage,
            "instructions": self.instructions,
            "created_at": _iso(self.created_at),
        }


class Transaction(db.Model):
    __tablename__ = 'transactions'
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    date = db.Column(db.DateTime, nullable=False, default=datetime.datetime.now, index=True)
    cashier_id = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Float, nullable=False, default=0)
    discount = db.Column(db.Float, nullable=False, default=0)
    discount_type = db.Column(db.String(20), nullable=False, default='percentage')
    total = db.Column(db.Float, nullable=False, default=0)
    payment_method = db.Column(db.String(20), nullable=False, default='cash')
    prescription_id = db.Column(db.String(32), db.ForeignKey('prescriptions.id'), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='completed')
    idempotency_key = db.Column(db.String(64), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.datetime.now, nullable=False)
    items = db.relationship('TransactionItem', backref='transaction', lazy=True,
                            cascade="all, delete-orphan", order_by='TransactionItem.created_at')
    prescription = db.relationship('Prescription')
    cashier = db.relationship('User', primaryjoin='foreign(Transaction.cashier_id) == User.id', viewonly=True)

    def to_dict(self):
        return {
            "id": self.id,
            "date": _iso(self.date),
            "cashier_id": self.cashier_id,
            "cashier_name": (self.cashier.name or self.cashier.username) if self.cashier else None,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "discount_type": self.discount_type,
            "total": self.total,
            "payment_method": self.payment_method,
            "prescription_id": self.prescription_id,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "transaction_items": [item.to_dict() for item in self.items],
        }


class TransactionItem(db.Model):
    __tablename__ = 'transaction_items'
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    transaction_id = db.Column(db.String(32), db.ForeignKey('transactions.id', ondelete='CASCADE'), nullable=False)
    product_id = db.Column(db.String(32), db.ForeignKey('products.id'), nullable=False)
    # Snapshot saat penjualan, supaya struk lama tetap sama walau produk berubah
    product_name = db.Column(db.String(150), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Float, nullable=False)
    buy_price = db.Column(db.Float, nullable=True)
    total = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.now, nullable=False)
    product = db.relationship('Product')

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price": self.price,
            "buy_price": self.buy_price,
            "total": self.total,
            "created_at": _iso(self.created_at),
        }


class Employee(TimestampMixin, db.Model):
    __tablename__ = 'employees'
    __table_args__ = (db.CheckConstraint("status IN ('active','inactive')", name='ck_employee_status'),)
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    name = db.Column(db.String(150), nullable=False)
    position = db.Column(db.String(100), nullable=False)
    base_salary = db.Column(db.Float, nullable=False)
    bonus = db.Column(db.Float, nullable=False, default=0)
    start_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='active')
    payrolls = db.relationship('Payroll', backref='employee', lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "position": self.position,
            "base_salary": self.base_salary,
            "bonus": self.bonus,
            "start_date": _iso(self.start_date),
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Payroll(TimestampMixin, db.Model):
    __tablename__ = 'payrolls'
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    employee_id = db.Column(db.String(32), db.ForeignKey('employees.id'), nullable=False)
    period_month = db.Column(db.String(7), nullable=False)
    total_salary = db.Column(db.Float, nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "employee_name": self.employee.name if self.employee else None,
            "position": self.employee.position if self.employee else None,
            "period_month": self.period_month,
            "total_salary": self.total_salary,
            "payment_date": _iso(self.payment_date),
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Expense(TimestampMixin, db.Model):
    __tablename__ = 'expenses'
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    category = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    amount = db.Column(db.Float, nullable=False)
    date = db.Column(db.Date, nullable=False)
    created_by = db.Column(db.String(50), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "category": self.category,
            "description": self.description,
            "amount": self.amount,
            "date": _iso(self.date),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class LedgerMixin(TimestampMixin):
    id = db.Column(db.String(32), primary_key=True, default=gen_id)
    date = db.Column(db.Date, nullable=False)
    amount = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "date": _iso(self.date),
            "amount": self.amount,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class CollectionRecord(LedgerMixin, db.Model):
    """Inkaso: tagihan yang dibuat."""
    __tablename__ = 'collections'


class PaymentRecord(LedgerMixin, db.Model):
    """Bayar: pembayaran atas inkaso."""
    __tablename__ = 'payments'
