"""Initial schema for academic records.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables and indexes used by the CSV import service."""

    # Teachers; the uid cookie carries teacher_id
    op.execute('''CREATE TABLE IF NOT EXISTS teachers (
                    teacher_id TEXT PRIMARY KEY,
                    name TEXT,
                    email TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS course_subjects (
                    course_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    code TEXT NOT NULL,
                    semester INTEGER NOT NULL,
                    department TEXT NOT NULL
                )''')

    # Batch IDs look like CSE2024B: department, intake year, section
    op.execute('''CREATE TABLE IF NOT EXISTS batches (
                    batch_id TEXT PRIMARY KEY,
                    batch_no TEXT NOT NULL,
                    course_id TEXT NOT NULL REFERENCES course_subjects(course_id),
                    year INTEGER NOT NULL,
                    department TEXT NOT NULL
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS students (
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
                )''')

    # One row per (student, course, month); month is always the 1st
    op.execute('''CREATE TABLE IF NOT EXISTS attendance (
                    attendance_id SERIAL PRIMARY KEY,
                    student_id TEXT NOT NULL REFERENCES students(student_id),
                    course_id TEXT NOT NULL REFERENCES course_subjects(course_id),
                    month DATE NOT NULL,
                    attendance_percent REAL NOT NULL
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS test_scores (
                    test_score_id SERIAL PRIMARY KEY,
                    student_id TEXT NOT NULL REFERENCES students(student_id),
                    course_id TEXT NOT NULL REFERENCES course_subjects(course_id),
                    test_date DATE NOT NULL,
                    score REAL NOT NULL
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS backlogs (
                    backlog_id SERIAL PRIMARY KEY,
                    student_id TEXT NOT NULL REFERENCES students(student_id),
                    course_id TEXT NOT NULL REFERENCES course_subjects(course_id),
                    attempts INTEGER NOT NULL,
                    cleared BOOLEAN NOT NULL DEFAULT FALSE
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS fee_payments (
                    fee_id SERIAL PRIMARY KEY,
                    student_id TEXT NOT NULL REFERENCES students(student_id),
                    due_date DATE NOT NULL,
                    paid_date DATE,
                    status TEXT NOT NULL,
                    due_months INTEGER NOT NULL
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS projects (
                    project_id SERIAL PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    student_id TEXT NOT NULL REFERENCES students(student_id),
                    supervisor_id TEXT REFERENCES teachers(teacher_id),
                    start_date DATE NOT NULL,
                    end_date DATE,
                    status TEXT DEFAULT 'Active'
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS phd_supervisions (
                    phd_id SERIAL PRIMARY KEY,
                    title TEXT NOT NULL,
                    research_area TEXT NOT NULL,
                    student_id TEXT NOT NULL REFERENCES students(student_id),
                    supervisor_id TEXT REFERENCES teachers(teacher_id),
                    start_date DATE NOT NULL,
                    expected_end DATE,
                    status TEXT DEFAULT 'Ongoing'
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS fellowships (
                    fellowship_id SERIAL PRIMARY KEY,
                    type TEXT NOT NULL,
                    amount REAL NOT NULL,
                    duration INTEGER NOT NULL,
                    student_id TEXT NOT NULL REFERENCES students(student_id),
                    supervisor_id TEXT REFERENCES teachers(teacher_id),
                    start_date DATE NOT NULL,
                    end_date DATE,
                    status TEXT DEFAULT 'Active'
                )''')

    # Lookup indexes for the upsert keys
    op.execute('CREATE INDEX IF NOT EXISTS idx_attendance_key ON attendance (student_id, course_id, month)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_backlogs_key ON backlogs (student_id, course_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_test_scores_student ON test_scores (student_id, course_id)')


def downgrade() -> None:
    """Drop all tables (destructive)."""
    op.execute('DROP TABLE IF EXISTS fellowships CASCADE')
    op.execute('DROP TABLE IF EXISTS phd_supervisions CASCADE')
    op.execute('DROP TABLE IF EXISTS projects CASCADE')
    op.execute('DROP TABLE IF EXISTS fee_payments CASCADE')
    op.execute('DROP TABLE IF EXISTS backlogs CASCADE')
    op.execute('DROP TABLE IF EXISTS test_scores CASCADE')
    op.execute('DROP TABLE IF EXISTS attendance CASCADE')
    op.execute('DROP TABLE IF EXISTS students CASCADE')
    op.execute('DROP TABLE IF EXISTS batches CASCADE')
    op.execute('DROP TABLE IF EXISTS course_subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS teachers CASCADE')
