import os
from dotenv import load_dotenv

load_dotenv()  # loads .env if present

class Config:
    # --- Database ---
    # Prefer an explicit DATABASE_URL (useful for hosted Postgres)
    DATABASE_URL = os.getenv('DATABASE_URL')

    # Component-wise settings, used when DATABASE_URL is not set. SQLite is the
    # default so the app runs without extra DB drivers.
    DB_DIALECT = os.getenv('DB_DIALECT', 'sqlite')  # 'postgres', 'mysql' or 'sqlite'
    DB_USER = os.getenv('DB_USER', 'postgres')
    DB_PASS = os.getenv('DB_PASS', '')
    DB_HOST = os.getenv('DB_HOST', 'localhost')
    DB_PORT = os.getenv('DB_PORT', '5432')
    DB_NAME = os.getenv('DB_NAME', 'exam_portal')

    SECRET_KEY = os.getenv('FLASK_SECRET', 'dev-secret-please-change')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Paper document storage ---
    STORAGE_DIR = os.getenv('STORAGE_DIR', os.path.join(os.path.dirname(__file__), 'storage'))
    QUESTIONS_BUCKET = os.getenv('QUESTIONS_BUCKET', 'exam-questions')
    PAPER_STORE_MAX_RETRIES = int(os.getenv('PAPER_STORE_MAX_RETRIES', '3'))

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Optional admin account created on startup when both are set
    ADMIN_EMAIL = os.getenv('ADMIN_EMAIL')
    ADMIN_PASSWORD = os.getenv('ADMIN_PASSWORD')

    @staticmethod
    def get_database_uri():
        """Build and return the database URI"""
        if Config.DATABASE_URL:
            url = Config.DATABASE_URL
            # heroku-style urls
            if url.startswith('postgres://'):
                url = url.replace('postgres://', 'postgresql+psycopg2://', 1)
            return url
        if Config.DB_DIALECT.lower() == 'mysql':
            return f'mysql+pymysql://{Config.DB_USER}:{Config.DB_PASS}@{Config.DB_HOST}:{Config.DB_PORT}/{Config.DB_NAME}'
        elif Config.DB_DIALECT.lower() in ('postgres', 'postgresql'):
            return f'postgresql+psycopg2://{Config.DB_USER}:{Config.DB_PASS}@{Config.DB_HOST}:{Config.DB_PORT}/{Config.DB_NAME}'
        else:
            db_path = os.path.join(os.path.dirname(__file__), 'data.sqlite')
            return f'sqlite:///{db_path}'
