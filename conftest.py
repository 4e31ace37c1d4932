import contextlib
import itertools

import pytest

from db import DatabaseError


class FakeTable:
    """In-memory stand-in for db.Table."""

    def __init__(self, key):
        self.key = key
        self.rows = []
        self.fail_with = None
        self._ids = itertools.count(1)

    def _check(self):
        if self.fail_with:
            raise DatabaseError(self.fail_with)

    def find_unique(self, key_value):
        return self.find_first(**{self.key: key_value})

    def find_first(self, **filters):
        for row in self.rows:
            if all(row.get(k) == v for k, v in filters.items()):
                return dict(row)
        return None

    def create(self, data):
        self._check()
        row = dict(data)
        row.setdefault(self.key, next(self._ids))
        self.rows.append(row)
        return dict(row)

    def update(self, key_value, data):
        self._check()
        for row in self.rows:
            if row.get(self.key) == key_value:
                row.update(data)
                return dict(row)
        return None

    def create_if_absent(self, data):
        self._check()
        if self.find_unique(data[self.key]) is not None:
            return False
        self.create(data)
        return True


class FakeStore:
    def __init__(self):
        self.teachers = FakeTable('teacher_id')
        self.courses = FakeTable('course_id')
        self.batches = FakeTable('batch_id')
        self.students = FakeTable('student_id')
        self.attendance = FakeTable('attendance_id')
        self.test_scores = FakeTable('test_score_id')
        self.backlogs = FakeTable('backlog_id')
        self.fee_payments = FakeTable('fee_id')
        self.projects = FakeTable('project_id')
        self.phd_supervisions = FakeTable('phd_id')
        self.fellowships = FakeTable('fellowship_id')
        self.commits = 0
        self.rollbacks = 0

    @contextlib.contextmanager
    def row(self):
        try:
            yield self
            self.commits += 1
        except Exception:
            self.rollbacks += 1
            raise

    @contextlib.contextmanager
    def savepoint(self, name='lazy_ref'):
        yield self


@pytest.fixture
def store():
    return FakeStore()
