import logging
import click
from flask import Flask, jsonify, request, session
from pydantic import ValidationError
from sqlalchemy import text
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash
from config import Config
from models import User, db
from object_storage import LocalBucket
from paper_store import PaperDocumentStore
from schemas import format_errors
from exam_status import sweep_exam_statuses
from utils import audit, current_user, user_to_dict
from admin_routes import admin_bp
from student_routes import student_bp
from question_routes import question_bp
from account_routes import account_bp

logger = logging.getLogger(__name__)

# Columns added after the first release. SQLite databases created by older
# versions get them on startup; other backends are expected to be migrated.
SQLITE_BACKFILL = {
    'exams': {
        'description': 'TEXT',
        'updated_at': 'DATETIME',
    },
    'students': {
        'phone': 'VARCHAR(50)',
        'address': 'TEXT',
        'guardian_name': 'VARCHAR(255)',
        'guardian_phone': 'VARCHAR(50)',
        'profile_image': 'TEXT',
        'password_hash': 'VARCHAR(256)',
    },
    'users': {
        'profile_image': 'TEXT',
        'email_notifications': 'BOOLEAN DEFAULT 1',
        'sms_notifications': 'BOOLEAN DEFAULT 0',
        'email_exam_results': 'BOOLEAN DEFAULT 1',
        'email_upcoming_exams': 'BOOLEAN DEFAULT 1',
        'sms_exam_results': 'BOOLEAN DEFAULT 0',
        'sms_upcoming_exams': 'BOOLEAN DEFAULT 0',
    },
}

def init_database(app):
    """Create tables, backfill missing SQLite columns and seed the admin account"""
    db.create_all()

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        for table, columns in SQLITE_BACKFILL.items():
            res = db.session.execute(text(f"PRAGMA table_info('{table}');")).fetchall()
            existing = {r[1] for r in res}  # r[1] is column name
            for column, ddl in columns.items():
                if column in existing:
                    continue
                try:
                    db.session.execute(text(f'ALTER TABLE {table} ADD COLUMN {column} {ddl};'))
                    db.session.commit()
                    logger.info('added column %s.%s', table, column)
                except Exception:
                    db.session.rollback()
                    logger.warning('could not add column %s.%s', table, column, exc_info=True)

    email = app.config.get('ADMIN_EMAIL')
    password = app.config.get('ADMIN_PASSWORD')
    if email and password and not User.query.filter_by(email=email).first():
        db.session.add(User(email=email, name='Administrator', role='admin',
                            password_hash=generate_password_hash(password)))
        db.session.commit()
        logger.info('created admin account %s', email)

def register_cli(app):
    @app.cli.command('create-admin')
    @click.option('--email', prompt=True)
    @click.option('--name', prompt=True, default='Administrator')
    @click.password_option()
    def create_admin(email, name, password):
        """Create an admin account."""
        if User.query.filter_by(email=email).first():
            raise click.ClickException('a user with this email already exists')
        db.session.add(User(email=email, name=name, role='admin',
                            password_hash=generate_password_hash(password)))
        db.session.commit()
        click.echo(f'Admin {email} created.')

    @app.cli.command('sweep-statuses')
    def sweep_statuses():
        """Persist the current status of every exam."""
        changed = sweep_exam_statuses()
        click.echo(f'{len(changed)} exam(s) updated.')

def register_error_handlers(app):
    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({'ok': False, 'msg': 'validation_error', 'errors': format_errors(e)}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'ok': False, 'msg': e.name.lower().replace(' ', '_')}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logger.exception('unhandled error on %s %s', request.method, request.path)
        return jsonify({'ok': False, 'msg': 'server_error'}), 500

def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    app.config['SQLALCHEMY_DATABASE_URI'] = Config.get_database_uri()
    if overrides:
        app.config.update(overrides)
    app.secret_key = app.config['SECRET_KEY']

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s - %(levelname)s - [%(name)s] - %(message)s',
    )

    # Initialize database
    db.init_app(app)

    # Paper documents live in object storage, not in the database
    bucket = LocalBucket(app.config['STORAGE_DIR'], app.config['QUESTIONS_BUCKET'])
    store = PaperDocumentStore(bucket, max_retries=app.config['PAPER_STORE_MAX_RETRIES'])
    store.initialize()
    app.extensions['paper_store'] = store

    # Register blueprints
    app.register_blueprint(admin_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(question_bp)
    app.register_blueprint(account_bp)
    register_error_handlers(app)
    register_cli(app)

    @app.route('/api/auth/logout', methods=['POST'])
    def logout():
        if session.get('user_id'):
            audit('logout')
        session.clear()
        return jsonify({'ok': True, 'msg': 'logged_out'})

    @app.route('/api/auth/session')
    def session_info():
        user = current_user()
        if not user:
            return jsonify({'ok': True, 'authenticated': False, 'user': None, 'redirectTo': '/'})
        return jsonify({
            'ok': True,
            'authenticated': True,
            'user': user_to_dict(user),
            'redirectTo': '/student/dashboard' if user.role == 'student' else '/admin',
        })

    # Server time endpoint (UTC)
    @app.route('/api/server_time')
    def server_time():
        from datetime import datetime, timezone
        now = datetime.now(timezone.utc)
        return jsonify({'ok': True, 'server_time_utc': now.isoformat()})

    with app.app_context():
        init_database(app)

    return app

# Run the application
if __name__ == '__main__':
    create_app().run(debug=True)
