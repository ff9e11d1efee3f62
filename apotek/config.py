import os
import sys
import datetime

from dotenv import load_dotenv

load_dotenv()

APP_NAME = 'HanumFarma'


def get_app_data_path():
    # Lokasi data aplikasi sesuai platform
    app_data = os.environ.get('APPDATA')
    if not app_data:
        home = os.path.expanduser('~')
        if sys.platform == 'darwin':
            app_data = os.path.join(home, 'Library', 'Application Support')
        else:
            app_data = os.path.join(home, '.local', 'share')
    return os.path.join(app_data, APP_NAME)


def default_database_uri():
    data_dir = get_app_data_path()
    os.makedirs(data_dir, exist_ok=True)
    return f"sqlite:///{os.path.join(data_dir, 'data.db')}"


def _is_dev():
    flag = os.environ.get('APOTEK_DEV', '').lower()
    return flag in ('1', 'true', 'yes') or os.environ.get('NODE_ENV') == 'development'


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'kunci-rahasia-hanum-farma-ganti-di-produksi')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ACCESS_TOKEN_EXPIRES = datetime.timedelta(hours=int(os.environ.get('TOKEN_EXPIRES_HOURS', 12)))

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    HOST = os.environ.get('HOST', 'localhost')
    PORT = int(os.environ.get('PORT', 3001))
    DEBUG = _is_dev()

    EXPIRY_WARNING_DAYS = 30
    TOP_PRODUCTS_LIMIT = 5

    DEFAULT_ADMIN_USERNAME = 'admin'
    DEFAULT_ADMIN_PASSWORD = '1234'
    DEFAULT_ADMIN_NAME = 'Administrator'
