import pandas as pd
import pytest

from conftest import make_campaign
from labelopt.infrastructure.data_validation import ValidationError, validate_campaign
from labelopt.infrastructure.spreadsheet import (
    EXPORT_COLUMNS,
    EXPORT_SHEET_NAME,
    read_campaign_sheet,
    rows_to_records,
    write_campaign_sheet,
)

REPORT_CSV = """Campaign name,Labels on Campaign,Camp. budget,Camp. cost,Camp. 3D cost,Camp. conv.,Camp. CPA,Camp. tCPA,MTD Cluster Spend,Label budget,Label cost,Label 3D cost,Label conv.,Label remaining budget,Label KPI value,Label CPA
Search - US,Brand,"$1,200",450.75,60,12,37.56,40,45%,30000,900,120,30,800.50,35,30
Search - India,Brand,300,150,20,0,0,35,12%,30000,900,120,30,800.50,35,30
Display - Broken,Brand,300,150,20,4,abc,35,,30000,900,120,30,800.50,35,30
,Brand,100,10,1,0,0,0,,30000,900,120,30,800.50,35,30
Video - Unlabeled,,50,5,1,0,0,0,n/a,0,0,0,0,0,0,0
"""


def _write(tmp_path, text, name="report.csv"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


# -----------------------
# Validation
# -----------------------
def test_validate_campaign_cleans_spreadsheet_numbers():
    rec = validate_campaign({"campaign_name": " Search - US ", "budget": "$1,200.90", "cpa": "12.5",
                             "mtd_cluster_spend_pct": "45%"})
    assert rec["campaign_name"] == "Search - US"
    assert rec["budget"] == 1200.0
    assert rec["cpa"] == 12.5
    assert rec["mtd_cluster_spend_pct"] == 45.0
    assert rec["label"] == ""
    assert rec["tcpa"] == 0


def test_validate_campaign_collects_every_error():
    with pytest.raises(ValidationError) as exc:
        validate_campaign({"campaign_name": "", "cpa": "n/a", "cost": "-5"})
    msg = exc.value.message
    assert "campaign_name" in msg
    assert "cpa" in msg
    assert "cost" in msg


def test_informational_fields_fall_back_to_zero():
    rec = validate_campaign({"campaign_name": "A", "label_cpa": "oops"})
    assert rec["label_cpa"] == 0.0


def test_validate_campaign_keeps_label_as_written():
    assert validate_campaign({"campaign_name": "A", "label": " Brand"})["label"] == " Brand"
    assert validate_campaign({"campaign_name": "A", "label": "   "})["label"] == ""


# -----------------------
# Import
# -----------------------
def test_read_csv_report_maps_headers_and_rejects_bad_rows(tmp_path):
    records, rejects = read_campaign_sheet(_write(tmp_path, REPORT_CSV))

    assert [r["campaign_name"] for r in records] == ["Search - US", "Search - India", "Video - Unlabeled"]
    us = records[0]
    assert us["label"] == "Brand"
    assert us["budget"] == 1200.0
    assert us["cost"] == 450.0
    assert us["cpa"] == pytest.approx(37.56)
    assert us["label_remaining_budget"] == pytest.approx(800.5)
    assert us["label_kpi"] == 35.0
    assert us["mtd_cluster_spend_pct"] == 45.0
    assert [r["row_order"] for r in records] == [0, 1, 4]
    assert records[2]["label"] == ""

    assert [(r.row_number, r.campaign_name) for r in rejects] == [(4, "Display - Broken"), (5, "")]
    assert any("cpa" in e for e in rejects[0].errors)


def test_read_xlsx_report(tmp_path):
    path = str(tmp_path / "report.xlsx")
    pd.DataFrame([{
        "Campaign Name": "Search - US", "Labels on Campaign": "Brand", "Camp. Budget": 100,
        "Camp. Cost (MTD)": 50.5, "Camp. 3D Cost": 12, "Camp. Conv": 2, "Camp. CPA": 25.25,
        "Camp. tCPA": 20, "Label Budget": 3000, "Label Remaining Budget (Daily)": 90,
        "Label KPI Value": 22,
    }]).to_excel(path, index=False)

    records, rejects = read_campaign_sheet(path)
    assert rejects == []
    assert records[0]["cost"] == 50.0
    assert records[0]["label_kpi"] == 22.0
    assert records[0]["label_cpa"] == 0


def test_read_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_campaign_sheet(str(tmp_path / "nope.csv"))


def test_rows_to_records_prefers_first_header_alias():
    records, _ = rows_to_records([{"Campaign name": "A", "Campaign Name": "B", "Camp. tCPA": "7.5"}])
    assert records[0]["campaign_name"] == "A"
    assert records[0]["tcpa"] == 7.5


# -----------------------
# Export
# -----------------------
def test_export_xlsx_appends_optimizer_columns(tmp_path):
    campaigns = [
        make_campaign("Second", row_order=1, new_daily_budget=12.34, new_target_cpa=8.5),
        make_campaign("First", row_order=0),
    ]
    path = str(tmp_path / "out" / "Optimized_Campaigns.xlsx")

    assert write_campaign_sheet(campaigns, path) == 2

    df = pd.read_excel(path, sheet_name=EXPORT_SHEET_NAME)
    assert list(df.columns) == [h for h, _ in EXPORT_COLUMNS]
    assert list(df["Campaign Name"]) == ["First", "Second"]
    assert list(df["New Daily Budget"]) == [0, 12.34]
    assert list(df["New Target CPA"]) == [0, 8.5]


def test_export_csv(tmp_path):
    path = str(tmp_path / "out.csv")
    write_campaign_sheet([make_campaign("Only", new_daily_budget=5.0, new_target_cpa=1.0)], path)
    df = pd.read_csv(path)
    assert df.loc[0, "Campaign Name"] == "Only"
    assert df.loc[0, "New Daily Budget"] == 5.0


def test_read_cp1252_csv(tmp_path):
    path = tmp_path / "legacy.csv"
    path.write_bytes(REPORT_CSV.replace("Search - India", "Café - India").encode("cp1252"))
    records, _ = read_campaign_sheet(str(path))
    assert records[1]["campaign_name"] == "Café - India"


def test_read_utf8_bom_csv(tmp_path):
    path = tmp_path / "bom.csv"
    path.write_bytes(REPORT_CSV.encode("utf-8-sig"))
    records, _ = read_campaign_sheet(str(path))
    assert records[0]["campaign_name"] == "Search - US"


@pytest.mark.parametrize("name", ["report.xls", "report.ods", "report"])
def test_unsupported_formats_are_rejected(tmp_path, name):
    path = tmp_path / name
    path.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1")
    with pytest.raises(ValueError, match="Unsupported report format"):
        read_campaign_sheet(str(path))
