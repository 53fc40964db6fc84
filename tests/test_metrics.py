import pytest

from conftest import make_campaign
from labelopt.analytics.metrics import (
    SUMMARY_COLUMNS,
    label_summary,
    performance_segment,
    performance_segments,
    region_spend_ratio,
    tcpa_variance_bucket,
    tcpa_variance_buckets,
)
from labelopt.engine.regional import RegionMatcher


def test_label_summary_aggregates_and_sorts_by_cost():
    campaigns = [
        make_campaign("A", label="Small", cost=100.0, budget=10.0, conversions=4.0, new_daily_budget=7.0),
        make_campaign("B", label="Big", cost=600.0, budget=20.0, conversions=0.0, label_kpi=30.0),
        make_campaign("C", label="Big", cost=400.0, budget=30.0, conversions=10.0, label_kpi=30.0,
                      new_daily_budget=11.5),
        make_campaign("D", label="", cost=0.0, budget=0.0, conversions=0.0),
    ]
    df = label_summary(campaigns)

    assert list(df.columns) == list(SUMMARY_COLUMNS)
    assert list(df["label"]) == ["Big", "Small", "Unlabeled"]
    big = df.iloc[0]
    assert big["campaigns"] == 2
    assert big["cost"] == pytest.approx(1000.0)
    assert big["cpa"] == pytest.approx(100.0)
    assert big["kpi"] == 30.0
    assert big["new_budget"] == pytest.approx(11.5)
    assert df.iloc[1]["utilization_pct"] == pytest.approx(1000.0)
    assert df.iloc[2]["cpa"] == 0.0
    assert df.iloc[2]["utilization_pct"] == 0.0


def test_label_summary_empty():
    df = label_summary([])
    assert df.empty
    assert list(df.columns) == list(SUMMARY_COLUMNS)


def test_performance_segments():
    campaigns = [
        make_campaign(cost_3d=2.0, cpa=0.0),   # sleeping wins over no data
        make_campaign(cost_3d=50.0, cpa=0.0),
        make_campaign(cost_3d=50.0, cpa=10.0),
        make_campaign(cost_3d=50.0, cpa=10.01),
    ]
    assert [performance_segment(c) for c in campaigns] == ["sleeping", "no_data", "good", "bad"]
    assert performance_segments(campaigns) == {"good": 1, "bad": 1, "sleeping": 1, "no_data": 1}
    assert performance_segments(campaigns, min_daily_budget=60.0)["sleeping"] == 4


def test_tcpa_variance_buckets_prefer_new_target():
    kpi = dict(label_kpi=100.0)
    campaigns = [
        make_campaign(tcpa=80.0, **kpi),
        make_campaign(tcpa=100.0, new_target_cpa=90.0, **kpi),
        make_campaign(tcpa=100.0, **kpi),
        make_campaign(tcpa=110.0, **kpi),
        make_campaign(tcpa=100.0, new_target_cpa=130.0, **kpi),
    ]
    assert [tcpa_variance_bucket(c) for c in campaigns] == ["High Cut", "Cut", "Neutral", "Boost", "High Boost"]
    assert tcpa_variance_buckets(campaigns) == {
        "High Cut": 1, "Cut": 1, "Neutral": 1, "Boost": 1, "High Boost": 1,
    }


def test_region_spend_ratio():
    campaigns = [
        make_campaign("Search - India", cost=250.0),
        make_campaign("Search - APAC", cost=250.0, region="India"),
        make_campaign("Search - US", cost=500.0),
    ]
    spend = region_spend_ratio(campaigns, RegionMatcher())
    assert spend.region == "India"
    assert spend.region_cost == pytest.approx(500.0)
    assert spend.ratio_pct == pytest.approx(50.0)
    assert region_spend_ratio([]).ratio_pct == 0.0
