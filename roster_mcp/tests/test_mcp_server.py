"""MCP tools driven end to end over a local artifact directory."""

from __future__ import annotations

import json

import pytest

from roster_mcp import mcp_server
from roster_mcp.storage import save_snapshot

SERVER = "Phục vụ"


@pytest.fixture
def artifacts(monkeypatch, tmp_path):
    monkeypatch.setenv("ROSTER_ARTIFACT_DIR", str(tmp_path))
    monkeypatch.delenv("ROSTER_SCORING_FILE", raising=False)
    snapshot = {
        "snapshot_id": "2025-W2-test",
        "created_at": "2025-01-05T00:00:00Z",
        "week_id": "2025-W2",
        "range": {"from": "2025-01-06", "to": "2025-01-12"},
        "employees": [
            {"id": "a", "display_name": "An", "role": SERVER},
            {"id": "b", "display_name": "Bình", "role": SERVER},
        ],
        "shifts": [
            {
                "id": "s1",
                "template_id": "T1",
                "date": "2025-01-06",
                "start": "08:00",
                "end": "12:00",
                "role": SERVER,
                "min_users": 2,
                "assigned": [{"user_id": "b", "user_name": "Bình", "role": SERVER}],
            },
            {"id": "s2", "template_id": "T2", "date": "2025-01-07", "start": "08:00", "end": "12:00", "role": SERVER, "min_users": 1},
        ],
        "availability": [
            {"user_id": "a", "date": "2025-01-06", "start": "08:00", "end": "16:00"},
            {"user_id": "b", "date": "2025-01-07", "start": "08:00", "end": "16:00"},
        ],
        "conditions": [{"id": "x", "type": "StaffExclusion", "userId": "a", "blockedUserIds": ["c"]}],
        "metadata": {"counts": {}},
    }
    save_snapshot(tmp_path, snapshot, {})
    return tmp_path


class TestTools:
    def test_snapshots(self, artifacts):
        assert [m["snapshot_id"] for m in mcp_server.list_snapshots()] == ["2025-W2-test"]
        assert mcp_server.load_snapshot()["week_id"] == "2025-W2"

    def test_validate_conditions(self, artifacts):
        assert mcp_server.validate_conditions() == {"ok": True, "malformed": False, "errors": [], "count": 1}
        bad = json.dumps([{"id": "d", "type": "DailyShiftLimit", "maxPerDay": 0}])
        assert mcp_server.validate_conditions(conditions_json=bad)["ok"] is False
        malformed = mcp_server.validate_conditions(conditions_json=json.dumps([{"id": "q", "type": "Nope"}]))
        assert malformed["malformed"] is True

    def test_run_schedule_summary(self, artifacts):
        summary = mcp_server.run_schedule()
        assert "evaluation_matrix" not in summary["result"]
        assert summary["metrics"]["assigned_units"] == 2
        assert [(a["shift_id"], a["user_id"], a["retained"]) for a in summary["result"]["assignments"]] == [
            ("s1", "b", True),
            ("s1", "a", False),
            ("s2", "b", False),
        ]
        assert mcp_server.list_plans()[0]["plan_id"] == summary["plan_id"]
        assert "evaluation_matrix" in mcp_server.load_plan()["result"]

    def test_run_schedule_export(self, artifacts):
        pytest.importorskip("openpyxl")
        summary = mcp_server.run_schedule(strategy="replace", export=True)
        assert set(summary["exports"]) >= {"plan.json", "assignments.csv", "plan.xlsx"}

    def test_run_schedule_rejects_strategy(self, artifacts):
        with pytest.raises(ValueError):
            mcp_server.run_schedule(strategy="overwrite")

    def test_explain_and_evaluate(self, artifacts):
        summary = mcp_server.run_schedule()
        info = mcp_server.explain("s1", "a")
        assert info["score"] == pytest.approx(66.0)
        assert mcp_server.explain("s1", "b", plan_id=summary["plan_id"])["retained"] is True
        report = mcp_server.evaluate_plan()
        assert report["meta"]["plan_id"] == summary["plan_id"]

    def test_preview_apply(self, artifacts):
        mcp_server.run_schedule()
        preview = mcp_server.preview_apply()
        assert preview["changed_shifts"] == [
            {"shift_id": "s1", "label": "", "date": "2025-01-06", "before": ["b"], "after": ["b", "a"]},
            {"shift_id": "s2", "label": "", "date": "2025-01-07", "before": [], "after": ["b"]},
        ]
        # b keeps the retained Monday shift without declaring it free.
        assert [(v["shift_id"], v["violation"]) for v in preview["violations"]] == [("s1", "unavailable")]
        assert preview["blocking"] == []

    def test_preview_apply_subset(self, artifacts):
        mcp_server.run_schedule()
        preview = mcp_server.preview_apply(selected=[{"shift_id": "s2", "user_id": "b"}])
        assert [c["shift_id"] for c in preview["changed_shifts"]] == ["s2"]


class TestHttpApp:
    def test_health_is_open_and_tools_need_token(self):
        from starlette.testclient import TestClient

        client = TestClient(mcp_server._http_app("secret"))
        assert client.get("/health").text == "ok"
        assert client.post("/mcp", json={}).status_code == 401
        assert client.post("/mcp", json={}, headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_no_key_means_no_check(self):
        from starlette.testclient import TestClient

        client = TestClient(mcp_server._http_app(None))
        assert client.get("/health").status_code == 200
