import os
from dotenv import load_dotenv

from flask import Flask
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from flask_login import LoginManager
from flask_migrate import Migrate

from despachante.errors import ContractError
from despachante.models import db, User
from despachante.services.pdf_service import PdfService
from despachante.services.storage_service import init_storage
from despachante.services.supabase_service import init_supabase
from despachante.utils import api_response

load_dotenv() # Load env vars before anything else


def _database_url(app):
    database_url = os.environ.get('DATABASE_URL')
    if database_url and database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if not database_url:
        database_url = f"sqlite:///{os.path.join(app.instance_path, 'despachante.db')}"
        app.logger.warning(f"DATABASE_URL not set, using SQLite at {database_url}")
    return database_url


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)
    os.makedirs(app.instance_path, exist_ok=True)

    # --- CONFIGURATION ---
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'despachante-dev-key')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Storage / Supabase
    app.config['SUPABASE_URL'] = os.environ.get('SUPABASE_URL')
    app.config['SUPABASE_KEY'] = os.environ.get('SUPABASE_KEY')
    app.config['SUPABASE_SERVICE_ROLE_KEY'] = os.environ.get('SUPABASE_SERVICE_ROLE_KEY')
    app.config['SUPABASE_BUCKET'] = os.environ.get('SUPABASE_BUCKET', 'contracts')
    app.config['STORAGE_BACKEND'] = os.environ.get('STORAGE_BACKEND') # supabase, local or unset (auto)
    app.config['UPLOAD_FOLDER'] = os.environ.get(
        'UPLOAD_FOLDER', os.path.join(app.instance_path, 'uploads', 'contracts')
    )

    # PDF rendering
    app.config['PDF_RENDER_SCALE'] = float(os.environ.get('PDF_RENDER_SCALE', 2))
    browser_args = os.environ.get('PDF_BROWSER_ARGS')
    app.config['PDF_BROWSER_ARGS'] = browser_args.split() if browser_args else ['--no-sandbox']

    if test_config:
        app.config.update(test_config)
    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        app.config['SQLALCHEMY_DATABASE_URI'] = _database_url(app)

    if app.config.get('STORAGE_BACKEND') == 'local':
        app.supabase = None
    else:
        try:
            app.supabase = init_supabase(app)
        except Exception as supabase_e:
            app.logger.error(f"Supabase Init Error: {supabase_e}")
            app.supabase = None
    app.blob_storage = init_storage(app)

    # PDF_SERVICE replaces the Playwright-backed renderer
    app.extensions['pdf_service'] = app.config.get('PDF_SERVICE') or PdfService()

    # --- INITIALIZE EXTENSIONS ---
    db.init_app(app)
    Migrate(app, db)

    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return api_response(success=False, error='Usuário não autenticado', status=401)

    # --- ERROR HANDLERS ---
    @app.errorhandler(ContractError)
    def contract_error(error):
        db.session.rollback()
        data = {'field': error.field} if getattr(error, 'field', None) else None
        if getattr(error, 'errors', None):
            data = {'field': error.field, 'errors': error.errors}
        return api_response(success=False, data=data, error=error.message, status=error.status_code)

    @app.errorhandler(HTTPException)
    def http_error(error):
        if error.code is None or error.code < 400:
            return error
        return api_response(success=False, error=error.description, status=error.code)

    @app.errorhandler(Exception)
    def internal_error(error):
        # Fail-safe rollback
        db.session.rollback()
        app.logger.exception(f"Unhandled error: {error}")
        return api_response(success=False, error='Erro interno do servidor', status=500)

    # --- REGISTER BLUEPRINTS ---
    from despachante.routes.contracts import contracts_bp
    from despachante.routes.templates import templates_bp
    from despachante.routes.pdf_routes import pdf_bp, storage_bp

    app.register_blueprint(contracts_bp)
    app.register_blueprint(templates_bp)
    app.register_blueprint(pdf_bp)
    app.register_blueprint(storage_bp)

    # --- TABLE CREATION ---
    with app.app_context():
        db.create_all()

    return app


if __name__ == '__main__':
    create_app().run(debug=True, port=5001)
