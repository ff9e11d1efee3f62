from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
import logging

from apotek.config import Config, default_database_uri

# 1. Buat instance ekstensi di luar fungsi
db = SQLAlchemy()
jwt = JWTManager()


def create_app(test_config=None):
    # 2. Buat instance aplikasi di dalam fungsi
    app = Flask(__name__)

    # 3. Konfigurasi: default dari Config, bisa ditimpa (misal oleh test)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        app.config['SQLALCHEMY_DATABASE_URI'] = default_database_uri()
    app.json.sort_keys = False

    # 4. Hubungkan ekstensi dengan aplikasi
    db.init_app(app)
    jwt.init_app(app)

    logging.basicConfig(level=logging.INFO)

    with app.app_context():
        # 5. Impor model, rute, dan command
        from . import models
        from . import errors
        from . import auth, routes, sales, reports
        from . import commands

        errors.register_error_handlers(app)
        app.register_blueprint(auth.bp)
        app.register_blueprint(routes.bp)
        app.register_blueprint(sales.bp)
        app.register_blueprint(reports.bp)

        # 6. Daftarkan CLI Commands dari file commands.py
        app.cli.add_command(commands.init_db_command)
        app.cli.add_command(commands.seed_db_command)
        app.cli.add_command(commands.create_user_command)

        commands.ensure_db()
        logging.info(f"Database: {app.config['SQLALCHEMY_DATABASE_URI']}")

    return app
