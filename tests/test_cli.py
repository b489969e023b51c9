from __future__ import annotations

import json
import logging
import os

import pytest

from dpengine.cli import EXIT_ERROR, EXIT_NOT_COMPLIANT, EXIT_OK, main
from dpengine.core.config.manager import ConfigManager
from dpengine.core.config.paths import ConfigFsPaths
from dpengine.core.engine import build_engine
from tests.helpers.builders import processing_payload, subject_payload


@pytest.fixture(autouse=True)
def _isolated_engine_logger():
    lg = logging.getLogger("dpengine")
    saved = list(lg.handlers)
    for h in saved:
        lg.removeHandler(h)
    yield
    for h in list(lg.handlers):
        lg.removeHandler(h)
        h.close()
    for h in saved:
        lg.addHandler(h)


@pytest.fixture
def root(tmp_path):
    return str(tmp_path)


@pytest.fixture
def seeded(root):
    """One subject with a scoring consent-basis activity but no consent yet."""
    cm = ConfigManager(fs=ConfigFsPaths(root))
    cfg = cm.load()
    eng = build_engine(cfg, sqlite_path=cm.resolve_path(cfg.store.sqlite_path))
    sid = eng.subjects.register(subject_payload())
    pid = eng.processing.register(processing_payload([sid]))
    return eng, sid, pid


def _run(capsys, *argv):
    rc = main(list(argv))
    out = capsys.readouterr()
    return rc, out.out, out.err


def test_print_config_writes_defaults(root, capsys):
    rc, out, _ = _run(capsys, "--root", root, "print-config")
    assert rc == EXIT_OK
    cfg = json.loads(out)
    assert cfg["store"]["backend"] == "sqlite"
    assert os.path.exists(os.path.join(root, "config", "engine.json"))


def test_check_exit_codes_follow_compliance(root, seeded, capsys):
    eng, sid, pid = seeded
    rc, out, _ = _run(capsys, "--root", root, "check", pid)
    assert rc == EXIT_NOT_COMPLIANT
    res = json.loads(out)
    assert [v["rule_id"] for v in res["violations"]] == ["consent.required"]

    eng.consents.register({"data_subject_id": sid, "purpose": "scoring"})
    rc, out, _ = _run(capsys, "--root", root, "check", pid, "--rule-set", "lgpd")
    assert rc == EXIT_OK
    assert json.loads(out)["regulation"] == "LGPD"


def test_check_unknown_processing_is_error(root, seeded, capsys):
    rc, out, err = _run(capsys, "--root", root, "check", "ghost")
    assert rc == EXIT_ERROR
    assert out == ""
    assert '"code": "not_found"' in err


def test_rights_check(root, seeded, capsys):
    _, sid, _ = seeded
    rc, out, _ = _run(capsys, "--root", root, "rights-check", sid)
    assert rc == EXIT_OK
    assert len(json.loads(out)["recommendations"]) == 5

    rc, out, _ = _run(capsys, "--root", root, "rights-check", "ghost")
    assert rc == EXIT_NOT_COMPLIANT
    assert json.loads(out)["violations"][0]["rule_id"] == "rights.subject_not_found"


def test_export_to_file_records_actor(root, seeded, tmp_path, capsys):
    eng, sid, _ = seeded
    target = str(tmp_path / "report.json")
    rc, out, _ = _run(capsys, "--root", root, "--actor", "dpo-1", "export", sid, "--out", target)
    assert rc == EXIT_OK
    assert out.strip() == target
    with open(target, encoding="utf-8") as f:
        report = json.load(f)
    assert report["subject"]["id"] == sid
    assert report["format"] == "JSON"

    latest = eng.audit.query({"subject_id": sid, "limit": 1})[0]
    assert latest.action == "export_data_portability"
    assert latest.actor == "dpo-1"


def test_erase_blocked_then_allowed(root, seeded, capsys):
    eng, sid, pid = seeded
    rc, _, err = _run(capsys, "--root", root, "erase", sid)
    assert rc == EXIT_ERROR
    assert "invalid_state" in err
    assert pid in err

    eng.processing.delete(pid)
    rc, out, _ = _run(capsys, "--root", root, "erase", sid)
    assert rc == EXIT_OK
    assert json.loads(out)["subject_id"] == sid
    assert eng.subjects.exists(sid) is False


def test_audit_lines_and_json(root, seeded, capsys):
    _, sid, _ = seeded
    rc, out, _ = _run(capsys, "--root", root, "audit")
    assert rc == EXIT_OK
    lines = out.strip().splitlines()
    assert len(lines) == 2
    assert " register_data_subject " in lines[0]
    assert " register_data_processing " in lines[1]

    rc, out, _ = _run(capsys, "--root", root, "audit", "--subject", sid, "--action", "register_data_subject", "--json")
    assert rc == EXIT_OK
    events = json.loads(out)
    assert [e["action"] for e in events] == ["register_data_subject"]
    assert events[0]["data_subject_id"] == sid

    rc, out, _ = _run(capsys, "--root", root, "audit", "--subject", "nobody")
    assert rc == EXIT_OK
    assert out == ""
