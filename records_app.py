"""
Academic Records - CSV Import Service

Flask application through which authenticated teachers upload CSV files of
student, attendance, test score, backlog, fee, project, PhD supervision and
fellowship records. Each upload is imported row by row into PostgreSQL and
answered with a JSON summary.
"""

from flask import Flask, render_template, request, jsonify, Response
from flask_wtf import FlaskForm
from flask_wtf.csrf import CSRFProtect, CSRFError
from flask_wtf.file import FileField
from flask_migrate import Migrate
from wtforms import StringField
from urllib.parse import unquote

import os
import logging
from dotenv import load_dotenv

import csv_import
import db

load_dotenv()

app = Flask(__name__, template_folder='frontend/templates', static_folder='static')
ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        # Explicitly opt-in fallback for local/dev only.
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None
app.config['WTF_CSRF_ENABLED'] = os.environ.get('CSRF_ENABLED', '1').strip().lower() in ('1', 'true', 'yes')
# Upload checks the token itself, after authentication.
app.config['WTF_CSRF_CHECK_DEFAULT'] = False
app.config['MAX_CONTENT_LENGTH'] = int(os.environ.get('MAX_UPLOAD_MB', '16')) * 1024 * 1024

# Initialize CSRF Protection
csrf = CSRFProtect(app)
migrate = Migrate(app, directory='migrations')

DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if not DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")

# Set up logging
logging.basicConfig(filename=os.environ.get('LOG_FILE', 'app.log'), level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")
if not app.config['WTF_CSRF_ENABLED']:
    logging.warning("CSRF protection is disabled.")

# Initialize database (can be disabled when schema is managed by migrations).
RUN_STARTUP_DDL = os.environ.get('RUN_STARTUP_DDL', '1').strip().lower() in ('1', 'true', 'yes')
if RUN_STARTUP_DDL:
    db.init_db()
else:
    logging.warning("RUN_STARTUP_DDL is disabled. Ensure schema is already migrated before startup.")


class CsvUploadForm(FlaskForm):
    class Meta:
        # csv_upload validates the token through CSRFProtect.
        csrf = False

    file = FileField('file')
    type = StringField('type')


def get_teacher_id():
    """Teacher identity from the URL-encoded `uid` cookie, or None."""
    raw = (request.cookies.get('uid') or '').strip()
    return unquote(raw) if raw else None


def read_uploaded_csv(form):
    """CSV text from the multipart `file` part; a plain text field is accepted too."""
    upload = form.file.data
    if upload is not None:
        return upload.read().decode('utf-8-sig', errors='replace')
    return request.form.get('file') or None


@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    return jsonify({'error': error.description}), 400


@app.route('/')
def home():
    # Thin shell around the client bundle
    return render_template('layout.html', title='Academic Records')


@app.route('/api/csv-upload', methods=['POST'])
def csv_upload():
    teacher_id = get_teacher_id()
    if not teacher_id:
        return jsonify({'error': 'Authentication required'}), 401
    if app.config['WTF_CSRF_ENABLED']:
        csrf.protect()

    try:
        form = CsvUploadForm()
        upload_type = (form.type.data or '').strip()
        csv_text = read_uploaded_csv(form)
        if csv_text is None or not upload_type:
            return jsonify({'error': 'File and type are required'}), 400

        rows = csv_import.prepare_upload(upload_type, csv_text, teacher_id)
        filename = form.file.data.filename if form.file.data is not None else '(form field)'
        logging.info("Processing %s CSV %s: %d rows", upload_type, filename, len(rows))

        with db.open_store() as store:
            summary = csv_import.import_rows(upload_type, rows, teacher_id, store)

        return jsonify({'success': True, **summary.as_dict()})
    except csv_import.UploadError as e:
        return jsonify({'error': str(e)}), e.status_code
    except Exception as e:
        logging.exception("CSV upload error")
        return jsonify({'error': f'Internal server error: {e}'}), 500


@app.route('/api/csv-template')
def csv_upload_template():
    """Download a CSV template for one upload type."""
    if not get_teacher_id():
        return jsonify({'error': 'Authentication required'}), 401

    upload_type = (request.args.get('type', '') or '').strip()
    try:
        content = csv_import.csv_template(upload_type)
    except csv_import.UploadError as e:
        return jsonify({'error': str(e)}), e.status_code

    return Response(
        content,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={upload_type}_upload_template.csv'}
    )

# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', '0').strip().lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
