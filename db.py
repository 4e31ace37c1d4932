from dotenv import load_dotenv
from contextlib import contextmanager
import logging
import os
import psycopg2
from psycopg2.extras import DictCursor

load_dotenv()


class DatabaseError(Exception):
    """Raised when PostgreSQL rejects a statement. Carries the server message."""


def database_url():
    url = (os.getenv("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    return url


def get_db():
    """Create a PostgreSQL DB connection."""
    return psycopg2.connect(database_url(), cursor_factory=DictCursor, connect_timeout=10)


@contextmanager
def db_connection(commit=False):
    """Context manager for PostgreSQL connections with optional commit."""
    conn = get_db()
    try:
        yield conn
        if commit:
            conn.commit()
    finally:
        conn.close()


def _adapt_query(query):
    return query.replace('?', '%s')


def db_execute(cursor, query, params=None):
    """
    Executes a SQL query using the provided cursor.
    Driver errors are logged and re-raised as DatabaseError.
    """
    try:
        if params is None:
            return cursor.execute(_adapt_query(query))
        return cursor.execute(_adapt_query(query), params)
    except psycopg2.Error as e:
        logging.error("SQL ERROR: %s", e)
        raise DatabaseError(str(e).strip()) from e


class Table:
    """Create/find/update access to one table keyed by a single column.

    Column names come from the import code, never from uploaded data;
    only values are passed as query parameters.
    """

    def __init__(self, store, name, key):
        self.store = store
        self.name = name
        self.key = key

    def _fetch_one(self, query, params):
        c = self.store.cursor
        db_execute(c, query, params)
        row = c.fetchone()
        return dict(row) if row else None

    def find_unique(self, key_value):
        return self._fetch_one(
            f'SELECT * FROM {self.name} WHERE {self.key} = ? LIMIT 1',
            (key_value,),
        )

    def find_first(self, **filters):
        where = ' AND '.join(f'{column} = ?' for column in filters)
        return self._fetch_one(
            f'SELECT * FROM {self.name} WHERE {where} ORDER BY {self.key} LIMIT 1',
            tuple(filters.values()),
        )

    def create(self, data):
        columns = ', '.join(data)
        placeholders = ', '.join('?' for _ in data)
        return self._fetch_one(
            f'INSERT INTO {self.name} ({columns}) VALUES ({placeholders}) RETURNING *',
            tuple(data.values()),
        )

    def update(self, key_value, data):
        assignments = ', '.join(f'{column} = ?' for column in data)
        return self._fetch_one(
            f'UPDATE {self.name} SET {assignments} WHERE {self.key} = ? RETURNING *',
            tuple(data.values()) + (key_value,),
        )

    def create_if_absent(self, data):
        """Insert unless a row with the same key exists. Returns True when inserted."""
        columns = ', '.join(data)
        placeholders = ', '.join('?' for _ in data)
        c = self.store.cursor
        db_execute(
            c,
            f'''INSERT INTO {self.name} ({columns}) VALUES ({placeholders})
                ON CONFLICT({self.key}) DO NOTHING''',
            tuple(data.values()),
        )
        return int(c.rowcount or 0) == 1


class Store:
    """Persistence gateway for one upload: a connection and a table per entity."""

    def __init__(self, conn):
        self.conn = conn
        self.cursor = conn.cursor()
        self.teachers = Table(self, 'teachers', 'teacher_id')
        self.courses = Table(self, 'course_subjects', 'course_id')
        self.batches = Table(self, 'batches', 'batch_id')
        self.students = Table(self, 'students', 'student_id')
        self.attendance = Table(self, 'attendance', 'attendance_id')
        self.test_scores = Table(self, 'test_scores', 'test_score_id')
        self.backlogs = Table(self, 'backlogs', 'backlog_id')
        self.fee_payments = Table(self, 'fee_payments', 'fee_id')
        self.projects = Table(self, 'projects', 'project_id')
        self.phd_supervisions = Table(self, 'phd_supervisions', 'phd_id')
        self.fellowships = Table(self, 'fellowships', 'fellowship_id')

    @contextmanager
    def row(self):
        """One transaction per imported row: commit on success, roll back on any error."""
        try:
            yield self
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    @contextmanager
    def savepoint(self, name='lazy_ref'):
        """Nested scope inside a row; a DatabaseError undoes only the work done here."""
        db_execute(self.cursor, f'SAVEPOINT {name}')
        try:
            yield self
        except DatabaseError:
            db_execute(self.cursor, f'ROLLBACK TO SAVEPOINT {name}')
            raise
        db_execute(self.cursor, f'RELEASE SAVEPOINT {name}')


@contextmanager
def open_store():
    with db_connection() as conn:
        yield Store(conn)


SCHEMA_STATEMENTS = (
    '''CREATE TABLE IF NOT EXISTS teachers (
            teacher_id TEXT PRIMARY KEY,
            name TEXT,
            email TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    '''CREATE TABLE IF NOT EXISTS course_subjects (
            course_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            code TEXT NOT NULL,
            semester INTEGER NOT NULL,
            department TEXT NOT NULL
        )''',
    '''CREATE TABLE IF NOT EXISTS batches (
            batch_id TEXT PRIMARY KEY,
            batch_no TEXT NOT NULL,
            course_id TEXT NOT NULL REFERENCES course_subjects(course_id),
            year INTEGER NOT NULL,
            department TEXT NOT NULL
        )''',
    '''CREATE TABLE IF NOT EXISTS students (
            student_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT,
            dob DATE NOT NULL,
            department TEXT,
            current_semester INTEGER NOT NULL CHECK (current_semester BETWEEN 1 AND 8),
            batch_id TEXT REFERENCES batches(batch_id),
            teacher_id TEXT REFERENCES teachers(teacher_id),
            parent_name TEXT,
            parent_email TEXT,
            parent_phone TEXT,
            address TEXT
        )''',
    '''CREATE TABLE IF NOT EXISTS attendance (
            attendance_id SERIAL PRIMARY KEY,
            student_id TEXT NOT NULL REFERENCES students(student_id),
            course_id TEXT NOT NULL REFERENCES course_subjects(course_id),
            month DATE NOT NULL,
            attendance_percent REAL NOT NULL
        )''',
    '''CREATE TABLE IF NOT EXISTS test_scores (
            test_score_id SERIAL PRIMARY KEY,
            student_id TEXT NOT NULL REFERENCES students(student_id),
            course_id TEXT NOT NULL REFERENCES course_subjects(course_id),
            test_date DATE NOT NULL,
            score REAL NOT NULL
        )''',
    '''CREATE TABLE IF NOT EXISTS backlogs (
            backlog_id SERIAL PRIMARY KEY,
            student_id TEXT NOT NULL REFERENCES students(student_id),
            course_id TEXT NOT NULL REFERENCES course_subjects(course_id),
            attempts INTEGER NOT NULL,
            cleared BOOLEAN NOT NULL DEFAULT FALSE
        )''',
    '''CREATE TABLE IF NOT EXISTS fee_payments (
            fee_id SERIAL PRIMARY KEY,
            student_id TEXT NOT NULL REFERENCES students(student_id),
            due_date DATE NOT NULL,
            paid_date DATE,
            status TEXT NOT NULL,
            due_months INTEGER NOT NULL
        )''',
    '''CREATE TABLE IF NOT EXISTS projects (
            project_id SERIAL PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT,
            student_id TEXT NOT NULL REFERENCES students(student_id),
            supervisor_id TEXT REFERENCES teachers(teacher_id),
            start_date DATE NOT NULL,
            end_date DATE,
            status TEXT DEFAULT 'Active'
        )''',
    '''CREATE TABLE IF NOT EXISTS phd_supervisions (
            phd_id SERIAL PRIMARY KEY,
            title TEXT NOT NULL,
            research_area TEXT NOT NULL,
            student_id TEXT NOT NULL REFERENCES students(student_id),
            supervisor_id TEXT REFERENCES teachers(teacher_id),
            start_date DATE NOT NULL,
            expected_end DATE,
            status TEXT DEFAULT 'Ongoing'
        )''',
    '''CREATE TABLE IF NOT EXISTS fellowships (
            fellowship_id SERIAL PRIMARY KEY,
            type TEXT NOT NULL,
            amount REAL NOT NULL,
            duration INTEGER NOT NULL,
            student_id TEXT NOT NULL REFERENCES students(student_id),
            supervisor_id TEXT REFERENCES teachers(teacher_id),
            start_date DATE NOT NULL,
            end_date DATE,
            status TEXT DEFAULT 'Active'
        )''',
    'CREATE INDEX IF NOT EXISTS idx_attendance_key ON attendance (student_id, course_id, month)',
    'CREATE INDEX IF NOT EXISTS idx_backlogs_key ON backlogs (student_id, course_id)',
    'CREATE INDEX IF NOT EXISTS idx_test_scores_student ON test_scores (student_id, course_id)',
)


def init_db():
    """
    Creates all required tables in PostgreSQL if they don't exist.
    """
    with db_connection(commit=True) as conn:
        cursor = conn.cursor()
        for statement in SCHEMA_STATEMENTS:
            db_execute(cursor, statement)
    logging.info("Database initialized successfully.")


if __name__ == "__main__":
    init_db()
