"""roster MCP server.

Exposes tools for schedule data sync, artifact persistence, schedule
generation (via roster_core), plan evaluation, and apply previews.
"""
from __future__ import annotations

import argparse
import hmac
import json
import logging
import os
from dataclasses import asdict
from typing import Any

from mcp.server.fastmcp import FastMCP

from roster_core.allocator import explain_assignment, plan_from_snapshot
from roster_core.apply import apply_result, check_strategy
from roster_core.conditions import ConditionError
from roster_core.constraints import audit_assignments, is_obligatory, validate_conditions as _validate_conditions
from roster_core.io import render_xlsx, write_output
from roster_core.io.reader import inputs_from_snapshot
from roster_core.models import Assignment, result_from_dict
from roster_core.time_utils import week_range

from .config import get_store_config, load_env, load_scoring, runtime_config
from .eval_lite import evaluate_plan_lite
from .firestore_client import ReadOnlyFirestoreClient
from .ingest import SnapshotBuildInput, build_snapshot
from .storage import (
    list_plans as _list_plans,
    list_snapshots as _list_snapshots,
    load_plan as _load_plan,
    load_snapshot as _load_snapshot,
    plan_root,
    save_plan as _save_plan,
    save_snapshot as _save_snapshot,
)
from .utils import ensure_week_id

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "roster",
    host=os.getenv("HOST", "127.0.0.1"),
    port=int(os.getenv("PORT", "8000")),
    instructions=(
        "Weekly shift allocation for restaurant staff. "
        "Syncs schedules, availability and scheduling conditions, generates "
        "deterministic staffing proposals, explains and evaluates them, and "
        "previews how a proposal would change the schedule. "
        "All data-store access is read-only."
    ),
)

_ENV_FILE: str | None = None
_CLIENT: ReadOnlyFirestoreClient | None = None


def _load_env() -> None:
    load_env(_ENV_FILE or os.getenv("ROSTER_ENV_FILE"))


def _client() -> ReadOnlyFirestoreClient:
    global _CLIENT
    if _CLIENT is None:
        _load_env()
        cfg = runtime_config()
        _CLIENT = ReadOnlyFirestoreClient(base_url=cfg.base_url, timezone=cfg.timezone)
    return _CLIENT


def _artifact_root():
    _load_env()
    return runtime_config().artifact_root


# -- Data sync --

@mcp.tool()
def sync_week(week_id: str) -> dict[str, Any]:
    """Fetch the schedule, staff, availability and conditions of one week and store a snapshot.

    week_id uses the ISO form `2025-W2`. Returns the snapshot manifest.
    """
    week_id = ensure_week_id(week_id)
    start_date, end_date = week_range(week_id)

    _load_env()
    cfg = runtime_config()
    store = get_store_config()
    raw_payload = _client().fetch_snapshot_payload(
        store, week_id=week_id, start_date=start_date, end_date=end_date,
    )
    snapshot = build_snapshot(
        SnapshotBuildInput(
            week_id=week_id,
            start_date=start_date,
            end_date=end_date,
            timezone=cfg.timezone,
            payload=raw_payload,
        )
    )
    target = _save_snapshot(cfg.artifact_root, snapshot, raw_payload)
    logger.info("stored snapshot %s for %s", snapshot["snapshot_id"], week_id)
    return {
        "snapshot_id": snapshot["snapshot_id"],
        "week_id": week_id,
        "range": snapshot["range"],
        "counts": snapshot["metadata"]["counts"],
        "skipped": snapshot["skipped"],
        "path": str(target),
    }


# -- Snapshots --

@mcp.tool()
def list_snapshots(limit: int = 20) -> list[dict[str, Any]]:
    """List local snapshot manifests, newest first."""
    return _list_snapshots(_artifact_root(), limit=limit)


@mcp.tool()
def load_snapshot(snapshot_id: str | None = None) -> dict[str, Any]:
    """Load a full snapshot JSON by ID (or latest if omitted)."""
    return _load_snapshot(_artifact_root(), snapshot_id=snapshot_id)


# -- Conditions --

@mcp.tool()
def validate_conditions(snapshot_id: str | None = None, conditions_json: str | None = None) -> dict[str, Any]:
    """Check a condition set for blocking contradictions.

    Validates `conditions_json` (a JSON list of condition records) when given,
    otherwise the conditions stored in the snapshot.
    """
    if conditions_json is not None:
        conditions = json.loads(conditions_json)
        if not isinstance(conditions, list):
            raise ValueError("conditions_json must be a JSON list")
    else:
        conditions = _load_snapshot(_artifact_root(), snapshot_id=snapshot_id).get("conditions", [])

    try:
        errors = _validate_conditions(conditions)
    except ConditionError as exc:
        return {"ok": False, "malformed": True, "errors": [str(exc)], "count": len(conditions)}
    return {"ok": not errors, "malformed": False, "errors": errors, "count": len(conditions)}


# -- Allocation engine --

@mcp.tool()
def run_schedule(
    snapshot_id: str | None = None,
    strategy: str = "merge",
    include_busy_users: bool = False,
    busy_exclusion_ids: list[str] | None = None,
    export: bool = False,
) -> dict[str, Any]:
    """Run the allocation engine on a snapshot and store the plan artifact.

    strategy is "merge" (keep existing assignees) or "replace" (start from an
    empty week). With include_busy_users, units left open are retried with
    availability lifted, except for busy_exclusion_ids. With export, CSV views
    and an XLSX workbook are written next to the plan.

    Returns a plan summary; the evaluation matrix stays on disk.
    """
    check_strategy(strategy)
    root = _artifact_root()
    snapshot = _load_snapshot(root, snapshot_id=snapshot_id)
    scoring = load_scoring(runtime_config().scoring_file)

    plan = plan_from_snapshot(
        snapshot,
        strategy=strategy,
        scoring=scoring,
        include_busy_users=include_busy_users,
        busy_exclusion_ids=tuple(busy_exclusion_ids or ()),
    )
    target = _save_plan(root, plan)

    exports: dict[str, str] = {}
    if export:
        written = write_output(plan, target / "export")
        written["plan.xlsx"] = render_xlsx(plan, target / "export" / "plan.xlsx")
        exports = {name: str(path) for name, path in written.items()}

    result = {k: v for k, v in plan["result"].items() if k != "evaluation_matrix"}
    return {
        "plan_id": plan["plan_id"],
        "snapshot_id": plan["snapshot_id"],
        "week_id": plan["week_id"],
        "strategy": strategy,
        "result": result,
        "metrics": plan["metrics"],
        "workload": plan["workload"],
        "exports": exports,
    }


# -- Plans --

@mcp.tool()
def list_plans(limit: int = 20) -> list[dict[str, Any]]:
    """List local plan manifests, newest first."""
    return _list_plans(_artifact_root(), limit=limit)


@mcp.tool()
def load_plan(plan_id: str | None = None) -> dict[str, Any]:
    """Load a full plan JSON by ID (or latest if omitted)."""
    return _load_plan(_artifact_root(), plan_id=plan_id)


@mcp.tool()
def explain(shift_id: str, user_id: str, plan_id: str | None = None) -> dict[str, Any]:
    """Explain why an employee was proposed for a shift: score breakdown and best alternatives."""
    plan = _load_plan(_artifact_root(), plan_id=plan_id)
    return explain_assignment(result_from_dict(plan["result"]), shift_id, user_id)


@mcp.tool()
def evaluate_plan(plan_id: str | None = None) -> dict[str, Any]:
    """Compute quality metrics for a plan: fill rate, fairness, overrides, coverage gaps.

    Uses the latest plan if plan_id is omitted.
    """
    plan = _load_plan(_artifact_root(), plan_id=plan_id)
    return evaluate_plan_lite(plan)


@mcp.tool()
def preview_apply(plan_id: str | None = None, selected: list[dict[str, str]] | None = None) -> dict[str, Any]:
    """Show how the schedule would look after applying a plan, without writing anything.

    selected optionally keeps only some proposals, as a list of
    {"shift_id": ..., "user_id": ...} objects. The resulting schedule is
    audited against the snapshot's conditions.
    """
    root = _artifact_root()
    plan = _load_plan(root, plan_id=plan_id)
    result = result_from_dict(plan["result"])
    if not result.ok:
        raise ValueError(f"plan {plan['plan_id']} failed validation and cannot be applied")
    week = inputs_from_snapshot(_load_snapshot(root, snapshot_id=plan["snapshot_id"]))

    pairs = {(s["shift_id"], s["user_id"]) for s in selected} if selected is not None else None
    after = apply_result(week.shifts, result, plan["strategy"], employees=week.employees, selected=pairs)
    before = {s.id: s for s in week.shifts}

    changes = []
    for shift in after:
        old = [a.user_id for a in before[shift.id].assigned]
        new = [a.user_id for a in shift.assigned]
        if old != new:
            changes.append({"shift_id": shift.id, "label": shift.label, "date": shift.date, "before": old, "after": new})

    violations = audit_assignments(
        [Assignment(shift_id=s.id, user_id=a.user_id, role=a.role) for s in after for a in s.assigned],
        after,
        week.employees,
        week.availability,
        week.conditions,
    )
    return {
        "plan_id": plan["plan_id"],
        "strategy": plan["strategy"],
        "changed_shifts": changes,
        "violations": violations,
        "blocking": [v for v in violations if is_obligatory(v["violation"])],
        "schedule": [asdict(s) for s in after],
        "plan_dir": str(plan_root(root) / plan["plan_id"]),
    }


# -- Server entrypoints --

def _http_app(api_key: str | None):
    """The streamable-http app with `/health` and an optional bearer check."""
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import JSONResponse, PlainTextResponse
    from starlette.routing import Route

    app = mcp.streamable_http_app()
    app.routes.append(Route("/health", lambda request: PlainTextResponse("ok")))
    if not api_key:
        return app

    expected = f"Bearer {api_key}"

    async def require_token(request, call_next):
        if request.url.path != "/health" and not hmac.compare_digest(
            request.headers.get("authorization", ""), expected
        ):
            return JSONResponse({"error": "unauthorized"}, status_code=401)
        return await call_next(request)

    app.add_middleware(BaseHTTPMiddleware, dispatch=require_token)
    return app


async def _run_http() -> None:
    import uvicorn

    app = _http_app(os.getenv("MCP_API_KEY"))
    server = uvicorn.Server(uvicorn.Config(app, host=mcp.settings.host, port=mcp.settings.port, log_level="info"))
    logger.info("serving MCP over HTTP on %s:%s", mcp.settings.host, mcp.settings.port)
    await server.serve()


def main() -> None:
    global _ENV_FILE

    parser = argparse.ArgumentParser(description="Run the roster MCP server")
    parser.add_argument("--env-file", default=None, help="Path to .env file")
    parser.add_argument(
        "--transport",
        default=None,
        choices=["stdio", "sse", "streamable-http"],
        help="MCP transport (default: streamable-http when PORT is set, else stdio)",
    )
    parser.add_argument("--log-level", default=os.getenv("ROSTER_LOG_LEVEL", "INFO"))
    args = parser.parse_args()
    _ENV_FILE = args.env_file

    # stdout carries the stdio protocol; logs go to stderr.
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    transport = args.transport
    if transport is None:
        transport = "streamable-http" if os.getenv("PORT") else "stdio"

    if transport == "streamable-http":
        import anyio
        anyio.run(_run_http)
    else:
        mcp.run(transport=transport)


if __name__ == "__main__":
    main()
