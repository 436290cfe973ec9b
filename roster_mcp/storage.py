"""JSON artifacts for synced snapshots and generated plans.

Layout under the artifact root:

    snapshots/<snapshot_id>/manifest.json
    snapshots/<snapshot_id>/normalized/snapshot.json
    snapshots/<snapshot_id>/raw/<collection>.json
    snapshots/latest.json
    plans/<plan_id>/manifest.json
    plans/<plan_id>/plan.json
    plans/latest.json

`latest.json` is a copy of the manifest most recently written for its kind.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

LATEST = "latest.json"
MANIFEST = "manifest.json"


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _kind_root(artifact_root: Path, kind: str) -> Path:
    root = artifact_root / kind
    root.mkdir(parents=True, exist_ok=True)
    return root


def snapshot_root(artifact_root: Path) -> Path:
    return _kind_root(artifact_root, "snapshots")


def plan_root(artifact_root: Path) -> Path:
    return _kind_root(artifact_root, "plans")


def _publish(root: Path, artifact_dir: Path, manifest: dict[str, Any]) -> None:
    manifest = {**manifest, "path": str(artifact_dir.resolve())}
    _write_json(artifact_dir / MANIFEST, manifest)
    _write_json(root / LATEST, manifest)
    logger.info("stored %s", artifact_dir)


def _manifest(root: Path, label: str, artifact_id: str | None) -> dict[str, Any]:
    path = root / artifact_id / MANIFEST if artifact_id else root / LATEST
    if not path.is_file():
        raise FileNotFoundError(f"{label} manifest not found: {artifact_id or 'latest'}")
    return _read_json(path)


def _payload(path: Path, label: str, artifact_id: str) -> Any:
    if not path.is_file():
        raise FileNotFoundError(f"{label} payload not found: {artifact_id}")
    return _read_json(path)


def _newest_manifests(root: Path, order_by: str, limit: int) -> list[dict[str, Any]]:
    found = []
    for path in root.glob(f"*/{MANIFEST}"):
        try:
            found.append(_read_json(path))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("ignoring unreadable manifest %s: %s", path, exc)
    found.sort(key=lambda m: m.get(order_by) or "", reverse=True)
    return found[:limit]


# ---- Snapshots -------------------------------------------------------------


def save_snapshot(artifact_root: Path, snapshot: dict[str, Any], raw_payload: dict[str, Any]) -> Path:
    """Store the normalized snapshot plus the raw documents it was built from."""
    root = snapshot_root(artifact_root)
    sid = snapshot["snapshot_id"]
    target = root / sid
    _write_json(target / "normalized" / "snapshot.json", snapshot)
    (target / "raw").mkdir(parents=True, exist_ok=True)
    for collection, documents in raw_payload.items():
        _write_json(target / "raw" / f"{collection}.json", documents)

    week_range = snapshot.get("range") or {}
    _publish(
        root,
        target,
        {
            "snapshot_id": sid,
            "week_id": snapshot.get("week_id"),
            "from": week_range.get("from"),
            "to": week_range.get("to"),
            "created_at": snapshot.get("created_at"),
            "counts": (snapshot.get("metadata") or {}).get("counts", {}),
        },
    )
    return target


def list_snapshots(artifact_root: Path, limit: int = 20) -> list[dict[str, Any]]:
    return _newest_manifests(snapshot_root(artifact_root), "created_at", limit)


def get_snapshot_manifest(artifact_root: Path, snapshot_id: str | None = None) -> dict[str, Any]:
    return _manifest(snapshot_root(artifact_root), "snapshot", snapshot_id)


def load_snapshot(artifact_root: Path, snapshot_id: str | None = None) -> dict[str, Any]:
    """Load a snapshot by id, or the most recently synced one."""
    sid = get_snapshot_manifest(artifact_root, snapshot_id)["snapshot_id"]
    path = snapshot_root(artifact_root) / sid / "normalized" / "snapshot.json"
    return _payload(path, "snapshot", sid)


# ---- Plans -----------------------------------------------------------------


def save_plan(artifact_root: Path, plan: dict[str, Any]) -> Path:
    root = plan_root(artifact_root)
    pid = plan["plan_id"]
    target = root / pid
    _write_json(target / "plan.json", plan)
    _publish(
        root,
        target,
        {
            "plan_id": pid,
            "snapshot_id": plan.get("snapshot_id"),
            "week_id": plan.get("week_id"),
            "generated_at": plan.get("generated_at"),
            "strategy": plan.get("strategy"),
            "range": plan.get("range"),
            "counts": plan.get("metrics", {}),
        },
    )
    return target


def list_plans(artifact_root: Path, limit: int = 20) -> list[dict[str, Any]]:
    return _newest_manifests(plan_root(artifact_root), "generated_at", limit)


def load_plan(artifact_root: Path, plan_id: str | None = None) -> dict[str, Any]:
    root = plan_root(artifact_root)
    pid = _manifest(root, "plan", plan_id)["plan_id"]
    return _payload(root / pid / "plan.json", "plan", pid)
