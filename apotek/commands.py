import click
from flask import current_app
from flask.cli import with_appcontext
import datetime
import logging
import random

# Impor db dan semua model yang dibutuhkan
from apotek import db
from apotek.models import (User, Supplier, Product, Prescription, PrescriptionMedication, Employee, Payroll,
                           Expense, CollectionRecord, PaymentRecord, ROLES)


def seed_default_admin():
    # Hanya untuk database baru: tabel pengguna masih kosong
    if db.session.query(User.id).first() is not None:
        return None
    admin = User(username=current_app.config['DEFAULT_ADMIN_USERNAME'], role='admin',
                 name=current_app.config['DEFAULT_ADMIN_NAME'])
    admin.set_password(current_app.config['DEFAULT_ADMIN_PASSWORD'])
    db.session.add(admin)
    db.session.commit()
    logging.info(f"Default admin user created: {admin.username}")
    return admin


def ensure_db():
    db.create_all()
    seed_default_admin()


@click.command(name='init-db')
@with_appcontext
def init_db_command():
    ensure_db()
    print("Database telah diinisialisasi.")


@click.command(name='create-user')
@click.argument('username')
@click.argument('password')
@click.option('--role', type=click.Choice(ROLES), default='kasir', show_default=True)
@click.option('--name', default=None)
@with_appcontext
def create_user_command(username, password, role, name):
    if User.query.filter_by(username=username).first():
        raise click.ClickException(f"Username '{username}' sudah digunakan.")
    user = User(username=username, role=role, name=name)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    print(f"Pengguna {username} ({role}) berhasil dibuat.")


@click.command(name='seed-db')
@with_appcontext
def seed_db_command():
    """Menghapus database dan membuat data demo (penjualan tersebar 30 hari terakhir)."""
    from apotek.sales import create_transaction

    db.drop_all()
    db.create_all()
    print("Database dibersihkan...")

    # ===================================================================
    ## 1. Buat Pengguna (Admin, Apoteker, Kasir)
    # ===================================================================
    admin = seed_default_admin()
    apoteker = User(username='apoteker', role='apoteker', name='Apoteker Jaga')
    apoteker.set_password('apoteker')
    kasir = User(username='kasir', role='kasir', name='Kasir Pagi')
    kasir.set_password('kasir')
    db.session.add_all([apoteker, kasir])
    db.session.commit()
    print("=> Pengguna (admin, apoteker, kasir) berhasil dibuat.")

    # ===================================================================
    ## 2. Buat Supplier & Produk
    # ===================================================================
    today = datetime.date.today()
    kimia = Supplier(name="PT Kimia Farma Trading", contact="Budi", phone="021-555-0101", email="order@kftd.co.id")
    enseval = Supplier(name="PT Enseval Putera Megatrading", contact="Sari", phone="021-555-0202")
    db.session.add_all([kimia, enseval])
    db.session.flush()

    products = [
        Product(name="Paracetamol 500mg", category="Analgesik", stock=200, min_stock=50, price=1000, buy_price=600,
                expiry_date=today + datetime.timedelta(days=400), supplier_id=kimia.id),
        Product(name="Amoxicillin 500mg", category="Antibiotik", stock=120, min_stock=30, price=2500, buy_price=1500,
                expiry_date=today + datetime.timedelta(days=200), requires_prescription=True, supplier_id=kimia.id),
        Product(name="OBH Combi 100ml", category="Obat Batuk", stock=40, min_stock=10, price=18000, buy_price=13500,
                expiry_date=today + datetime.timedelta(days=20), supplier_id=enseval.id),
        Product(name="Vitamin C 500mg", category="Vitamin", stock=8, min_stock=20, price=1500, buy_price=900,
                expiry_date=today + datetime.timedelta(days=365), supplier_id=enseval.id),
        Product(name="Antasida Doen", category="Pencernaan", stock=60, min_stock=15, price=800, buy_price=450,
                supplier_id=enseval.id),
    ]
    db.session.add_all(products)
    db.session.commit()
    print(f"=> 2 Supplier dengan total {len(products)} produk berhasil dibuat.")

    # ===================================================================
    ## 3. Karyawan, Gaji, Pengeluaran, Inkaso
    # ===================================================================
    karyawan = Employee(name="Rina", position="Asisten Apoteker", base_salary=3500000, bonus=250000,
                        start_date=today.replace(day=1) - datetime.timedelta(days=365))
    db.session.add(karyawan)
    db.session.flush()
    db.session.add(Payroll(employee_id=karyawan.id, period_month=today.strftime('%Y-%m'),
                           total_salary=karyawan.base_salary + karyawan.bonus, payment_date=today))
    db.session.add(Expense(category="Listrik", description="Tagihan PLN bulan ini", amount=750000,
                           date=today, created_by=str(admin.id)))
    db.session.add(CollectionRecord(date=today - datetime.timedelta(days=3), amount=2500000))
    db.session.add(PaymentRecord(date=today - datetime.timedelta(days=1), amount=1000000))
    db.session.commit()
    print("=> Karyawan, gaji, pengeluaran, dan inkaso berhasil dibuat.")

    # ===================================================================
    ## 4. Resep & Transaksi Demo
    # ===================================================================
    resep = Prescription(doctor_name="dr. Andi Wijaya", patient_name="Ibu Sulastri", created_by=str(apoteker.id))
    resep.medications.append(PrescriptionMedication(product_id=products[1].id, quantity=10,
                                                    dosage="3x1", instructions="Sesudah makan, dihabiskan"))
    db.session.add(resep)
    db.session.commit()

    over_the_counter = [p for p in products if not p.requires_prescription and p.stock >= 40]
    for _ in range(12):
        picked = random.sample(over_the_counter, k=random.randint(1, 3))
        items = [{"product_id": p.id, "quantity": random.randint(1, 3)} for p in picked]
        transaction, created = create_transaction(kasir, {"items": items, "discount": random.choice([0, 0, 5]),
                                                          "discount_type": "percentage"})
        transaction.date = datetime.datetime.now() - datetime.timedelta(days=random.randint(0, 29))
    db.session.commit()
    create_transaction(apoteker, {"items": [{"product_id": products[1].id, "quantity": 10}],
                                  "prescription_id": resep.id})
    print("=> Resep dan 13 transaksi demo berhasil dibuat.")
    print("\nDatabase siap untuk demo! Silakan jalankan aplikasi.")
