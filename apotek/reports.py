import datetime
from io import BytesIO
import logging

from flask import Blueprint, current_app, send_file
from sqlalchemy.orm import joinedload
import pandas as pd

from apotek import db
from apotek.auth import roles_required, login_required
from apotek.models import Product, Prescription, Transaction, TransactionItem, Payroll, Expense
from apotek.routes import ledger_totals
from apotek.utils import ok, date_range_args, filter_date_range, round_money, DATE_FORMAT

bp = Blueprint('reports', __name__, url_prefix='/api')


# ===================================================================
# AGREGASI
# ===================================================================

def report_range():
    """Rentang laporan; default awal bulan ini sampai hari ini."""
    start, end = date_range_args()
    today = datetime.date.today()
    end = end or today
    start = start or end.replace(day=1)
    return start, end


def previous_range(start, end):
    length = (end - start).days + 1
    prev_end = start - datetime.timedelta(days=1)
    return prev_end - datetime.timedelta(days=length - 1), prev_end


def completed_transactions(start, end):
    query = Transaction.query.options(
        joinedload(Transaction.items).joinedload(TransactionItem.product)
    ).filter(Transaction.status == 'completed')
    query = filter_date_range(query, Transaction.date, start, end, with_time=True)
    return query.order_by(Transaction.date).all()


def calculate_trend(current, previous):
    if not previous:
        return {"percentage": 0, "is_positive": True}
    change = (current - previous) / previous * 100
    return {"percentage": round(abs(change), 1), "is_positive": change >= 0}


def item_cogs(item):
    # Harga beli saat penjualan; baris lama tanpa snapshot memakai harga beli produk saat ini
    if item.buy_price is not None:
        buy_price = item.buy_price
    elif item.product is not None:
        buy_price = item.product.buy_price or 0
    else:
        buy_price = 0
    return buy_price * item.quantity


def sales_totals(transactions):
    revenue = sum(t.total for t in transactions)
    count = len(transactions)
    return {
        "total_revenue": round_money(revenue),
        "total_transactions": count,
        "average_per_transaction": round_money(revenue / count) if count else 0,
    }


def product_sales(transactions):
    """Ringkasan per nama produk, urut omzet terbesar."""
    summary = {}
    for t in transactions:
        for item in t.items:
            row = summary.setdefault(item.product_name, {
                "name": item.product_name, "quantity": 0, "revenue": 0.0, "cogs": 0.0})
            row["quantity"] += item.quantity
            row["revenue"] += item.total
            row["cogs"] += item_cogs(item)
    rows = sorted(summary.values(), key=lambda r: r["revenue"], reverse=True)
    for row in rows:
        row["revenue"] = round_money(row["revenue"])
        row["cogs"] = round_money(row["cogs"])
        row["gross_profit"] = round_money(row["revenue"] - row["cogs"])
    return rows


def sales_report(start, end):
    transactions = completed_transactions(start, end)
    previous = completed_transactions(*previous_range(start, end))

    daily = {}
    for t in transactions:
        day = t.date.strftime(DATE_FORMAT)
        row = daily.setdefault(day, {"date": day, "sales": 0.0, "transactions": 0})
        row["sales"] = round_money(row["sales"] + t.total)
        row["transactions"] += 1

    current_totals = sales_totals(transactions)
    previous_totals = sales_totals(previous)
    limit = current_app.config['TOP_PRODUCTS_LIMIT']

    report = {"from": start.isoformat(), "to": end.isoformat(), "daily": list(daily.values())}
    report.update(current_totals)
    report["trends"] = {
        "revenue": calculate_trend(current_totals["total_revenue"], previous_totals["total_revenue"]),
        "transactions": calculate_trend(current_totals["total_transactions"], previous_totals["total_transactions"]),
        "average_transaction": calculate_trend(current_totals["average_per_transaction"],
                                               previous_totals["average_per_transaction"]),
    }
    report["top_products"] = [
        {"name": r["name"], "quantity": r["quantity"], "revenue": r["revenue"]}
        for r in product_sales(transactions)[:limit]
    ]
    return report


def expiry_limit():
    return datetime.date.today() + datetime.timedelta(days=current_app.config['EXPIRY_WARNING_DAYS'])


def stock_report():
    limit = expiry_limit()
    rows = []
    for p in Product.query.order_by(Product.name).all():
        rows.append({
            "id": p.id,
            "product": p.name,
            "category": p.category,
            "remaining": p.stock,
            "min_stock": p.min_stock,
            "status": 'low' if p.is_low_stock else 'normal',
            "expiry_date": p.expiry_date.isoformat() if p.expiry_date else None,
            "expiring": bool(p.expiry_date and p.expiry_date <= limit),
        })
    return rows


def profit_report(start, end):
    transactions = completed_transactions(start, end)
    omzet = sum(item.total for t in transactions for item in t.items)
    cogs = sum(item_cogs(item) for t in transactions for item in t.items)
    discounts = sum(t.subtotal - t.total for t in transactions)

    payroll = filter_date_range(db.session.query(db.func.sum(Payroll.total_salary)),
                                Payroll.payment_date, start, end).scalar() or 0
    expenses = filter_date_range(db.session.query(db.func.sum(Expense.amount)),
                                 Expense.date, start, end).scalar() or 0

    total_expenses = cogs + discounts + payroll + expenses
    margin = (omzet - cogs - discounts - payroll) / omzet * 100 if omzet else 0

    report = {
        "from": start.isoformat(),
        "to": end.isoformat(),
        "omzet": round_money(omzet),
        "cogs": round_money(cogs),
        "discounts": round_money(discounts),
        "payroll": round_money(payroll),
        "expenses": round_money(expenses),
        "total_expenses": round_money(total_expenses),
        "net_profit": round_money(omzet - total_expenses),
        "margin_percent": round(margin, 2),
    }
    report.update({k: round_money(v) for k, v in ledger_totals(start, end).items()})
    totals = sales_totals(transactions)
    report["total_transactions"] = totals["total_transactions"]
    report["average_per_transaction"] = totals["average_per_transaction"]
    return report


# ===================================================================
# LAPORAN API
# ===================================================================

@bp.route('/reports/sales', methods=['GET'])
@roles_required('admin')
def get_sales_report():
    return ok(sales_report(*report_range()))


@bp.route('/reports/stock', methods=['GET'])
@roles_required('admin')
def get_stock_report():
    return ok(stock_report())


@bp.route('/reports/profit', methods=['GET'])
@roles_required('admin')
def get_profit_report():
    return ok(profit_report(*report_range()))


@bp.route('/reports/export', methods=['GET'])
@roles_required('admin')
def export_report():
    start, end = report_range()
    sales = sales_report(start, end)
    profit = profit_report(start, end)
    products = product_sales(completed_transactions(start, end))

    summary_rows = [
        {"Keterangan": "Periode", "Nilai": f"{start.isoformat()} s/d {end.isoformat()}"},
        {"Keterangan": "Total Penjualan", "Nilai": sales["total_revenue"]},
        {"Keterangan": "Total Transaksi", "Nilai": sales["total_transactions"]},
        {"Keterangan": "Rata-rata per Transaksi", "Nilai": sales["average_per_transaction"]},
    ]
    summary_rows += [{"Keterangan": d["date"], "Nilai": d["sales"]} for d in sales["daily"]]

    product_rows = [{
        "Produk": r["name"],
        "Terjual": r["quantity"],
        "Omzet": r["revenue"],
        "HPP": r["cogs"],
        "Laba Kotor": r["gross_profit"],
    } for r in products]

    stock_rows = [{
        "Produk": r["product"],
        "Sisa Stok": r["remaining"],
        "Stok Minimum": r["min_stock"],
        "Status": 'Menipis' if r["status"] == 'low' else 'Normal',
        "Kedaluwarsa": r["expiry_date"] or '-',
    } for r in stock_report()]

    profit_rows = [
        {"Keterangan": "Omzet", "Nilai": profit["omzet"]},
        {"Keterangan": "HPP", "Nilai": profit["cogs"]},
        {"Keterangan": "Diskon", "Nilai": profit["discounts"]},
        {"Keterangan": "Gaji Karyawan", "Nilai": profit["payroll"]},
        {"Keterangan": "Pengeluaran Operasional", "Nilai": profit["expenses"]},
        {"Keterangan": "Total Biaya", "Nilai": profit["total_expenses"]},
        {"Keterangan": "Laba Bersih", "Nilai": profit["net_profit"]},
        {"Keterangan": "Margin (%)", "Nilai": profit["margin_percent"]},
        {"Keterangan": "Inkaso", "Nilai": profit["inkaso"]},
        {"Keterangan": "Bayar", "Nilai": profit["bayar"]},
        {"Keterangan": "Tagihan", "Nilai": profit["tagihan"]},
    ]

    sheets = [
        ('Ringkasan Penjualan', summary_rows, ["Keterangan", "Nilai"]),
        ('Produk Terlaris', product_rows, ["Produk", "Terjual", "Omzet", "HPP", "Laba Kotor"]),
        ('Stok', stock_rows, ["Produk", "Sisa Stok", "Stok Minimum", "Status", "Kedaluwarsa"]),
        ('Laba Rugi', profit_rows, ["Keterangan", "Nilai"]),
    ]

    output = BytesIO()
    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        for sheet_name, rows, columns in sheets:
            pd.DataFrame(rows, columns=columns).to_excel(writer, sheet_name=sheet_name, index=False)
            writer.sheets[sheet_name].set_column(0, len(columns) - 1, 22)

    output.seek(0)
    today = datetime.date.today()
    logging.info(f"Laporan diekspor untuk periode {start} - {end}")
    return send_file(
        output,
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        as_attachment=True,
        download_name=f'Laporan_Apotek_{today.strftime(DATE_FORMAT)}.xlsx'
    )


# ===================================================================
# DASHBOARD
# ===================================================================

@bp.route('/dashboard', methods=['GET'])
@login_required
def get_dashboard():
    today = datetime.date.today()
    yesterday = today - datetime.timedelta(days=1)
    today_tx = completed_transactions(today, today)
    yesterday_tx = completed_transactions(yesterday, yesterday)
    today_sales = round_money(sum(t.total for t in today_tx))
    yesterday_sales = round_money(sum(t.total for t in yesterday_tx))

    low_stock = Product.query.filter(Product.stock <= Product.min_stock).count()
    expiring = Product.query.filter(Product.expiry_date.isnot(None), Product.expiry_date <= expiry_limit()).count()
    active_prescriptions = Prescription.query.filter_by(status='active').count()

    return ok({
        "today_sales": today_sales,
        "today_transactions": len(today_tx),
        "yesterday_sales": yesterday_sales,
        "sales_trend": calculate_trend(today_sales, yesterday_sales),
        "low_stock_count": low_stock,
        "expiring_count": expiring,
        "active_prescriptions": active_prescriptions,
    })
