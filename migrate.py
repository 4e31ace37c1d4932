"""
Apply database migrations without starting the web server.

Usage:
  python migrate.py

Uses Flask-Migrate (Alembic) to bring the schema up to the latest revision.
"""

import os
import sys


def main():
    # Schema comes from the migrations only; skip the startup DDL.
    os.environ['RUN_STARTUP_DDL'] = '0'

    import records_app
    from flask_migrate import upgrade

    try:
        print("Applying database migrations...")
        with records_app.app.app_context():
            upgrade(directory='migrations')
        print("✓ Migrations completed successfully.")
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
