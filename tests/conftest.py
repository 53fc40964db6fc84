import itertools
import random
from pathlib import Path
from typing import List

import pytest

from labelopt.config import OptimizerConfig
from labelopt.models import Campaign
from labelopt.storage import Store

REPO_ROOT = Path(__file__).resolve().parent.parent
SCHEMA_PATH = REPO_ROOT / "config" / "schema.settings.yaml"
SETTINGS_PATH = REPO_ROOT / "config" / "settings.yaml"

_ids = itertools.count(1)


def make_campaign(name: str = "Search - US", label: str = "Brand", **kw) -> Campaign:
    defaults = dict(
        budget=50.0,
        cost=300.0,
        cost_3d=30.0,
        conversions=10.0,
        cpa=10.0,
        tcpa=10.0,
        label_budget=3000.0,
        label_remaining_budget=100.0,
        label_kpi=10.0,
    )
    defaults.update(kw)
    cid = defaults.pop("id", None) or f"c{next(_ids)}"
    return Campaign(id=cid, campaign_name=name, label=label, **defaults)


def random_snapshot(seed: int, labels: int = 6, per_label: int = 7) -> List[Campaign]:
    rng = random.Random(seed)
    out: List[Campaign] = []
    for li in range(labels):
        label = f"L{li}"
        kpi = rng.choice([4.0, 10.0, 25.0, 60.0])
        label_budget = rng.choice([0.0, 500.0, 3000.0, 20000.0])
        remaining = rng.choice([0.0, 40.0, 250.0, 1200.0])
        for ci in range(per_label):
            name = f"{label} {'India' if rng.random() < 0.35 else 'Global'} {ci}"
            out.append(make_campaign(
                name=name,
                label=label,
                cost=round(rng.uniform(0, 2000), 2),
                cost_3d=rng.choice([0.0, 2.5, round(rng.uniform(5, 300), 2)]),
                cpa=rng.choice([0.0, round(rng.uniform(1, 3 * kpi), 2)]),
                tcpa=round(rng.uniform(1, 2 * kpi), 2),
                label_budget=label_budget,
                label_remaining_budget=remaining,
                label_kpi=kpi,
            ))
    return out


@pytest.fixture
def cfg() -> OptimizerConfig:
    return OptimizerConfig()


@pytest.fixture
def store(tmp_path):
    s = Store(str(tmp_path / "state.sqlite"))
    yield s
    s.close()


def campaign_record(name: str, label: str = "Brand", **kw) -> dict:
    rec = dict(
        campaign_name=name,
        label=label,
        budget=50, cost=300, cost_3d=30, conversions=10, cpa=10.0, tcpa=10.0,
        label_budget=3000, label_remaining_budget=100.0, label_kpi=10.0,
    )
    rec.update(kw)
    return rec
