"""
CSV import pipeline for teacher uploads.

An upload is parsed into rows keyed by the header line, then each row is
validated, coerced and written through the persistence gateway (db.Store)
according to the descriptor of its upload type in UPLOAD_TYPES. Rows are
independent units of work: a rejected row is reported as "Row n: reason"
and the import carries on with the next one.
"""

import csv
import logging
import math
import re
from datetime import datetime
from functools import partial
from io import StringIO

from db import DatabaseError

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 10
BATCH_ID_PATTERN = re.compile(r'^([A-Z]+)(\d{4})([A-Z])$')
DATE_FORMATS = ('%Y/%m/%d', '%m/%d/%Y')
CLEARED_TRUE_VALUES = {'true', 'TRUE', 'True', '1'}
DEFAULT_DEPARTMENT = 'General'


class UploadError(Exception):
    """The upload as a whole was rejected before any row was processed."""
    status_code = 400


class AuthenticationRequired(UploadError):
    status_code = 401

    def __init__(self, message='Authentication required'):
        super().__init__(message)


class RowRejected(ValueError):
    """A single row failed coercion or a reference check."""


class ImportSummary:
    def __init__(self, total):
        self.total = total
        self.processed = 0
        self.errors = []

    def add_error(self, row_number, message):
        self.errors.append(f'Row {row_number}: {message}')

    def as_dict(self):
        return {
            'processed': self.processed,
            'total': self.total,
            'errors': self.errors[:MAX_REPORTED_ERRORS],
        }


# ==================== PARSING ====================

def _split_csv_line(line):
    fields = []
    current = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and line[i + 1:i + 2] == '"':
                # "" inside a quoted field is a literal quote
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == ',' and not in_quotes:
            fields.append(''.join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1
    fields.append(''.join(current).strip())
    return fields


def _strip_outer_quotes(value):
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"'):
        value = value[:-1]
    return value


def parse_csv(csv_text):
    """Parse upload text into a list of {header: value-or-None} dicts.

    Returns an empty list when there is no data line after the header.
    Lines whose field count differs from the header are dropped.
    """
    lines = (csv_text or '').strip().split('\n')
    if len(lines) < 2:
        return []

    headers = [h.replace('"', '') for h in _split_csv_line(lines[0])]
    rows = []
    for line_number, line in enumerate(lines[1:], start=2):
        values = [_strip_outer_quotes(v) for v in _split_csv_line(line)]
        if len(values) != len(headers):
            logger.warning(
                "Dropping CSV line %d: expected %d fields, found %d",
                line_number, len(headers), len(values),
            )
            continue
        rows.append({h: (v if v.strip() else None) for h, v in zip(headers, values)})
    return rows


# ==================== VALIDATION & COERCION ====================

def validate_row(upload_type, row):
    """Return None when every required field is present, else "Missing <field>"."""
    descriptor = UPLOAD_TYPES[upload_type]
    for field in descriptor['required']:
        if field in descriptor.get('presence_only', ()):
            if row.get(field) is None:
                return f'Missing {field} field'
        elif not row.get(field):
            return f'Missing {field}'
    return None


def parse_date(value):
    """Parse a CSV date cell; None when it is not a recognised date."""
    text = (value or '').strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _date(value, label):
    parsed = parse_date(value)
    if parsed is None:
        raise RowRejected(f'{label}: {value}')
    return parsed


def _optional_date(value, label):
    return _date(value, label) if value else None


def parse_month(value):
    """Accept YYYY-MM or a full date; the result is the first day of that month."""
    if '-' not in value or len(value) < 7:
        raise RowRejected(f'Invalid month format: {value}')
    parsed = parse_date(value + '-01' if len(value) == 7 else value)
    if parsed is None:
        raise RowRejected(f'Invalid month date: {value}')
    return parsed.replace(day=1)


def _number(value, label, minimum=None, maximum=None):
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise RowRejected(f'{label}: {value}') from None
    if not math.isfinite(number):
        raise RowRejected(f'{label}: {value}')
    if (minimum is not None and number < minimum) or (maximum is not None and number > maximum):
        raise RowRejected(f'{label}: {value}')
    return number


def _integer(value, label, minimum=None, maximum=None):
    number = _number(value, label, minimum, maximum)
    if not number.is_integer():
        raise RowRejected(f'{label}: {value}')
    return int(number)


def _coerce_student(row):
    return {
        'student_id': row['studentId'],
        'name': row['name'],
        'email': row['email'],
        'phone': row.get('phone'),
        'dob': _date(row['dob'], 'Invalid date format for dob'),
        'department': row.get('department'),
        'current_semester': _integer(row['currentSemester'], 'Invalid currentSemester', 1, 8),
        'batch_id': row.get('batchId'),
        'parent_name': row.get('parentName'),
        'parent_email': row.get('parentEmail'),
        'parent_phone': row.get('parentPhone'),
        'address': row.get('address'),
    }


def _coerce_attendance(row):
    return {
        'student_id': row['studentId'],
        'course_id': row['courseId'],
        'month': parse_month(row['month']),
        'attendance_percent': _number(row['attendancePercent'], 'Invalid attendance percentage', 0, 100),
    }


def _coerce_test_score(row):
    return {
        'student_id': row['studentId'],
        'course_id': row['courseId'],
        'test_date': _date(row['testDate'], 'Invalid test date'),
        'score': _number(row['score'], 'Invalid score', 0, 100),
    }


def _coerce_backlog(row):
    return {
        'student_id': row['studentId'],
        'course_id': row['courseId'],
        'attempts': _integer(row['attempts'], 'Invalid attempts', 1),
        'cleared': row['cleared'] in CLEARED_TRUE_VALUES,
    }


def _coerce_fee(row):
    return {
        'student_id': row['studentId'],
        'due_date': _date(row['dueDate'], 'Invalid due date'),
        'paid_date': _optional_date(row.get('paidDate'), 'Invalid paid date'),
        'status': row['status'],
        'due_months': _integer(row['dueMonths'], 'Invalid due months', 1),
    }


def _coerce_project(row):
    return {
        'title': row['title'],
        'description': row.get('description'),
        'student_id': row['studentId'],
        'start_date': _date(row['startDate'], 'Invalid start date'),
        'end_date': _optional_date(row.get('endDate'), 'Invalid end date'),
        'status': row.get('status') or 'Active',
    }


def _coerce_phd(row):
    return {
        'title': row['title'],
        'research_area': row['researchArea'],
        'student_id': row['studentId'],
        'start_date': _date(row['startDate'], 'Invalid start date'),
        'expected_end': _optional_date(row.get('expectedEnd'), 'Invalid expected end date'),
        'status': row.get('status') or 'Ongoing',
    }


def _coerce_fellowship(row):
    return {
        'type': row['type'],
        'amount': _number(row['amount'], 'Invalid amount', 0),
        'duration': _integer(row['duration'], 'Invalid duration', 1),
        'student_id': row['studentId'],
        'start_date': _date(row['startDate'], 'Invalid start date'),
        'end_date': _optional_date(row.get('endDate'), 'Invalid end date'),
        'status': row.get('status') or 'Active',
    }


# ==================== PERSISTENCE ====================

def _require_student(store, student_id):
    student = store.students.find_unique(student_id)
    if student is None:
        raise RowRejected(f'Student {student_id} not found')
    return student


def _ensure_course(store, course_id, name, department):
    created = store.courses.create_if_absent({
        'course_id': course_id,
        'name': name,
        'code': course_id,
        'semester': 1,
        'department': department,
    })
    if created:
        logger.info("Created course %s for department %s", course_id, department)


def _resolve_batch(store, batch_id, note):
    """Return the batch id to store on the student, creating the batch when the code allows it."""
    try:
        with store.savepoint():
            if store.batches.find_unique(batch_id) is not None:
                return batch_id
            match = BATCH_ID_PATTERN.match(batch_id)
            if not match:
                logger.info("Batch %s not found and code is not DEPTYYYYS; leaving it unset", batch_id)
                return None
            department, year, section = match.groups()
            course_id = f'{department}_GENERAL'
            _ensure_course(store, course_id, f'{department} General Course', department)
            created = store.batches.create_if_absent({
                'batch_id': batch_id,
                'batch_no': section,
                'course_id': course_id,
                'year': int(year),
                'department': department,
            })
            if created:
                logger.info(
                    "Created batch %s for department %s, year %s, section %s",
                    batch_id, department, year, section,
                )
            return batch_id
    except DatabaseError as e:
        note(f'Could not create/find batch {batch_id}: {e}')
        return None


def _save_student(store, record, teacher_id, note):
    batch_id = record.pop('batch_id')
    record['batch_id'] = _resolve_batch(store, batch_id, note) if batch_id else None

    student_id = record['student_id']
    existing = store.students.find_unique(student_id)
    if existing is None:
        store.students.create(dict(record, teacher_id=teacher_id))
        logger.info("Created student %s (%s)", student_id, record['name'])
        return

    changes = {k: v for k, v in record.items() if k != 'student_id'}
    if not existing.get('teacher_id'):
        # Unowned students are claimed; owned ones keep their teacher.
        changes['teacher_id'] = teacher_id
        logger.info("Assigning teacher %s to existing student %s", teacher_id, student_id)
    store.students.update(student_id, changes)


def _save_attendance(store, record, teacher_id, note):
    existing = store.attendance.find_first(
        student_id=record['student_id'],
        course_id=record['course_id'],
        month=record['month'],
    )
    if existing:
        store.attendance.update(existing['attendance_id'], {'attendance_percent': record['attendance_percent']})
    else:
        store.attendance.create(record)


def _save_backlog(store, record, teacher_id, note):
    existing = store.backlogs.find_first(student_id=record['student_id'], course_id=record['course_id'])
    if existing:
        store.backlogs.update(existing['backlog_id'], {
            'attempts': record['attempts'],
            'cleared': record['cleared'],
        })
    else:
        store.backlogs.create(record)


def _append(table_name, supervised=False):
    def save(store, record, teacher_id, note):
        if supervised:
            record = dict(record, supervisor_id=teacher_id)
        getattr(store, table_name).create(record)
    return save


UPLOAD_TYPES = {
    'students': {
        'required': ('studentId', 'name', 'email', 'dob', 'currentSemester'),
        'optional': ('phone', 'department', 'batchId', 'parentName', 'parentEmail', 'parentPhone', 'address'),
        'sample': {'studentId': 'S1001', 'name': 'Asha Rao', 'email': 'asha@example.edu', 'dob': '2004-05-17',
                   'currentSemester': '3', 'department': 'CSE', 'batchId': 'CSE2024B'},
        'coerce': _coerce_student,
        'needs_student': False,
        'needs_course': False,
        'save': _save_student,
    },
    'attendance': {
        'required': ('studentId', 'courseId', 'month', 'attendancePercent'),
        'sample': {'studentId': 'S1001', 'courseId': 'CS301', 'month': '2024-09', 'attendancePercent': '87.5'},
        'coerce': _coerce_attendance,
        'needs_student': True,
        'needs_course': True,
        'save': _save_attendance,
    },
    'testscores': {
        'required': ('studentId', 'courseId', 'testDate', 'score'),
        'sample': {'studentId': 'S1001', 'courseId': 'CS301', 'testDate': '2024-09-20', 'score': '78'},
        'coerce': _coerce_test_score,
        'needs_student': True,
        'needs_course': True,
        'save': _append('test_scores'),
    },
    'backlogs': {
        'required': ('studentId', 'courseId', 'attempts', 'cleared'),
        'presence_only': ('cleared',),
        'sample': {'studentId': 'S1001', 'courseId': 'MA201', 'attempts': '2', 'cleared': 'false'},
        'coerce': _coerce_backlog,
        'needs_student': True,
        'needs_course': True,
        'save': _save_backlog,
    },
    'fees': {
        'required': ('studentId', 'dueDate', 'status', 'dueMonths'),
        'optional': ('paidDate',),
        'sample': {'studentId': 'S1001', 'dueDate': '2024-10-01', 'status': 'Pending', 'dueMonths': '1'},
        'coerce': _coerce_fee,
        'needs_student': True,
        'needs_course': False,
        'save': _append('fee_payments'),
    },
    'projects': {
        'required': ('studentId', 'title', 'startDate'),
        'optional': ('description', 'endDate', 'status'),
        'sample': {'studentId': 'S1001', 'title': 'Campus Energy Monitor', 'startDate': '2024-08-01',
                   'status': 'Active'},
        'coerce': _coerce_project,
        'needs_student': True,
        'needs_course': False,
        'save': _append('projects', supervised=True),
    },
    'phd': {
        'required': ('studentId', 'title', 'researchArea', 'startDate'),
        'optional': ('expectedEnd', 'status'),
        'sample': {'studentId': 'S1001', 'title': 'Graph Neural Networks for Traffic', 'researchArea': 'Machine Learning',
                   'startDate': '2023-07-01', 'expectedEnd': '2027-06-30', 'status': 'Ongoing'},
        'coerce': _coerce_phd,
        'needs_student': True,
        'needs_course': False,
        'save': _append('phd_supervisions', supervised=True),
    },
    'fellowships': {
        'required': ('studentId', 'type', 'amount', 'duration', 'startDate'),
        'optional': ('endDate', 'status'),
        'sample': {'studentId': 'S1001', 'type': 'JRF', 'amount': '37000', 'duration': '24',
                   'startDate': '2024-01-01', 'status': 'Active'},
        'coerce': _coerce_fellowship,
        'needs_student': True,
        'needs_course': False,
        'save': _append('fellowships', supervised=True),
    },
}


# ==================== IMPORT ====================

def prepare_upload(upload_type, csv_text, teacher_id):
    """Request-level checks; returns the parsed rows or raises UploadError."""
    if not teacher_id:
        raise AuthenticationRequired()
    rows = parse_csv(csv_text)
    if not rows:
        raise UploadError('No valid data found in CSV')
    if upload_type not in UPLOAD_TYPES:
        raise UploadError('Invalid upload type')
    return rows


def _import_row(store, descriptor, row, teacher_id, note):
    record = descriptor['coerce'](row)
    with store.row():
        student = _require_student(store, record['student_id']) if descriptor['needs_student'] else None
        if descriptor['needs_course']:
            course_id = record['course_id']
            if store.courses.find_unique(course_id) is None:
                department = (student or {}).get('department') or DEFAULT_DEPARTMENT
                _ensure_course(store, course_id, f'Course {course_id}', department)
        descriptor['save'](store, record, teacher_id, note)


def _register_teacher(store, teacher_id):
    # Students and supervised records reference teachers(teacher_id).
    with store.row():
        if store.teachers.create_if_absent({'teacher_id': teacher_id}):
            logger.info("Registered teacher %s", teacher_id)


def import_rows(upload_type, rows, teacher_id, store):
    """Validate and persist rows one at a time; returns an ImportSummary."""
    descriptor = UPLOAD_TYPES[upload_type]
    summary = ImportSummary(total=len(rows))
    logger.info("Processing %s CSV: %d rows for teacher %s", upload_type, len(rows), teacher_id)
    _register_teacher(store, teacher_id)

    for row_number, row in enumerate(rows, start=1):
        note = partial(summary.add_error, row_number)
        reason = validate_row(upload_type, row)
        if reason:
            note(reason)
            continue
        try:
            _import_row(store, descriptor, row, teacher_id, note)
        except RowRejected as e:
            note(str(e))
            continue
        except DatabaseError as e:
            note(f'Database error - {e}')
            continue
        summary.processed += 1

    logger.info("Completed %s CSV: %d/%d records processed", upload_type, summary.processed, summary.total)
    if summary.errors:
        logger.info("%s CSV: %d errors encountered", upload_type, len(summary.errors))
    return summary


def import_csv(upload_type, csv_text, teacher_id, store):
    rows = prepare_upload(upload_type, csv_text, teacher_id)
    return import_rows(upload_type, rows, teacher_id, store)


def csv_template(upload_type):
    """Header line plus one sample row for the given upload type."""
    descriptor = UPLOAD_TYPES.get(upload_type)
    if descriptor is None:
        raise UploadError('Invalid upload type')
    headers = list(descriptor['required']) + list(descriptor.get('optional', ()))
    output = StringIO()
    writer = csv.writer(output, lineterminator='\n')
    writer.writerow(headers)
    writer.writerow([descriptor['sample'].get(h, '') for h in headers])
    return output.getvalue()
