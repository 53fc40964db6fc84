import json

import pandas as pd
import pytest

from conftest import SCHEMA_PATH, SETTINGS_PATH
from labelopt.cli import main
from labelopt.infrastructure.spreadsheet import EXPORT_SHEET_NAME
from labelopt.storage import Store

REPORT_CSV = """Campaign name,Labels on Campaign,Camp. budget,Camp. cost,Camp. 3D cost,Camp. conv.,Camp. CPA,Camp. tCPA,Label budget,Label remaining budget,Label KPI value
Efficient,Brand,100,400,50,50,8,10,3000,100,10
Inefficient,Brand,100,300,50,20,15,12,3000,100,10
Search - India,Generic,100,150,40,0,0,20,1000,100,10
Search - US,Generic,100,900,60,0,0,20,1000,100,10
Broken,Generic,100,oops,60,0,0,20,1000,100,10
"""


@pytest.fixture
def run(tmp_path, capsys):
    db = str(tmp_path / "cli.sqlite")

    def _run(*args):
        code = main(["--settings", str(SETTINGS_PATH), "--schema", str(SCHEMA_PATH), "--db", db, *args])
        return code, capsys.readouterr().out

    _run.db = db
    return _run


@pytest.fixture
def report(tmp_path):
    path = tmp_path / "report.csv"
    path.write_text(REPORT_CSV, encoding="utf-8")
    return str(path)


def _last_json(out):
    return json.loads(out.strip().splitlines()[-1])


def test_import_optimize_export_round(run, report, tmp_path):
    code, out = run("import", report)
    assert code == 0
    assert _last_json(out) == {"success": True, "count": 4, "rejected": 1}

    code, out = run("optimize")
    assert code == 0
    assert _last_json(out) == {"success": True, "count": 4, "dry_run": False}

    export = str(tmp_path / "Optimized_Campaigns.xlsx")
    code, _ = run("export", export)
    assert code == 0
    df = pd.read_excel(export, sheet_name=EXPORT_SHEET_NAME).set_index("Campaign Name")
    assert df.loc["Efficient", "New Daily Budget"] == 62.5
    assert df.loc["Inefficient", "New Daily Budget"] == 37.5
    assert df.loc["Search - India", "New Daily Budget"] == 10.0
    assert df.loc["Search - US", "New Daily Budget"] == 90.0


def test_optimize_dry_run_with_explain(run, report):
    run("import", report)
    code, out = run("optimize", "--dry-run", "--explain", "--workers", "2")
    assert code == 0
    assert '"label": "Generic"' in out
    assert '"region_cap_applied": true' in out
    assert _last_json(out)["dry_run"] is True


def test_summary_and_runs(run, report):
    run("import", report)
    run("optimize")

    code, out = run("summary")
    assert code == 0
    payload = json.loads(out)
    assert {row["label"] for row in payload["labels"]} == {"Brand", "Generic"}
    assert payload["region"]["ratio_pct"] == pytest.approx(150 / 1750 * 100, abs=0.01)
    assert sum(payload["segments"].values()) == 4

    code, out = run("runs", "--limit", "5")
    assert code == 0
    assert "success" in out


def test_import_replace(run, report):
    run("import", report)
    code, out = run("import", "--replace", report)
    assert code == 0
    assert _last_json(out)["count"] == 4


def test_missing_import_file(run, tmp_path):
    code, _ = run("import", str(tmp_path / "missing.csv"))
    assert code == 1


def test_invalid_settings_exit_nonzero(tmp_path, capsys):
    bad = tmp_path / "bad.yaml"
    bad.write_text("optimizer:\n  days_remaining: 0\n", encoding="utf-8")
    code = main(["--settings", str(bad), "--schema", str(SCHEMA_PATH), "--db", str(tmp_path / "x.sqlite"), "runs"])
    assert code == 1
    assert "configuration" in capsys.readouterr().err


def _stored_names(db):
    store = Store(db)
    try:
        return sorted(c.campaign_name for c in store.load_snapshot())
    finally:
        store.close()


def test_failed_replace_import_keeps_existing_campaigns(run, report, monkeypatch):
    run("import", report)
    before = _stored_names(run.db)

    real_params = Store._campaign_params

    def null_name_for_us(record, cid, now_iso):
        params = real_params(record, cid, now_iso)
        if record["campaign_name"] == "Search - US":
            params["campaign_name"] = None
        return params

    monkeypatch.setattr(Store, "_campaign_params", staticmethod(null_name_for_us))
    code, out = run("import", "--replace", report)

    assert code == 1
    assert _last_json(out)["success"] is False
    monkeypatch.undo()
    assert _stored_names(run.db) == before
    assert len(before) == 4


def test_import_cp1252_report(run, tmp_path):
    path = tmp_path / "legacy.csv"
    path.write_bytes(REPORT_CSV.replace("Search - India", "Café - India").encode("cp1252"))

    code, out = run("import", str(path))

    assert code == 0
    assert _last_json(out)["count"] == 4
    assert "Café - India" in _stored_names(run.db)


def test_legacy_xls_is_rejected_with_a_message(run, tmp_path):
    path = tmp_path / "report.xls"
    path.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 504)

    code, out = run("import", str(path))

    assert code == 1
    payload = _last_json(out)
    assert payload["success"] is False
    assert ".xls" in payload["details"]
