import contextlib
import json

import pytest

import load_csv


@pytest.fixture
def fake_open_store(monkeypatch, store):
    @contextlib.contextmanager
    def fake():
        yield store

    monkeypatch.setattr(load_csv.db, "open_store", fake)
    return store


def test_main_imports_file_and_prints_summary(tmp_path, capsys, fake_open_store):
    path = tmp_path / "students.csv"
    path.write_text("studentId,name,email,dob,currentSemester\nS1,Alice,a@x.com,2000-01-01,3\n", encoding="utf-8")

    assert load_csv.main(["--type", "students", "--teacher", "T1", str(path)]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out == {"success": True, "processed": 1, "total": 1, "errors": []}
    assert fake_open_store.students.find_unique("S1")["teacher_id"] == "T1"


def test_main_returns_error_for_empty_file(tmp_path, capsys, fake_open_store):
    path = tmp_path / "empty.csv"
    path.write_text("studentId,name\n", encoding="utf-8")

    assert load_csv.main(["--type", "students", "--teacher", "T1", str(path)]) == 1
    assert "No valid data found in CSV" in capsys.readouterr().err


def test_unknown_type_is_rejected_by_argument_parser(tmp_path):
    with pytest.raises(SystemExit):
        load_csv.parse_args(["--type", "grades", "--teacher", "T1", str(tmp_path / "x.csv")])
