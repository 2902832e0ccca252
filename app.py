from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from typing import Optional

from flask import Flask, jsonify, request

from archives import describe_archives
from errors import InputError, WastebackError
from wasteback import WastebackMachine


logger = logging.getLogger(__name__)

app = Flask(__name__)
tool = WastebackMachine()
REPORT_JOBS: dict[str, dict] = {}
REPORT_JOBS_LOCK = threading.Lock()

MAX_ACTIVE_JOBS = int(os.environ.get("MAX_ACTIVE_JOBS", "4"))
ACTIVE_JOBS_LOCK = threading.Lock()
ACTIVE_JOBS_COUNT = 0
JOB_RETENTION_SECONDS = int(os.environ.get("JOB_RETENTION_SECONDS", "3600"))
JOB_CLEANUP_INTERVAL_SECONDS = int(os.environ.get("JOB_CLEANUP_INTERVAL_SECONDS", "60"))
_LAST_JOB_CLEANUP_TS = 0.0
FINISHED_STATES = {"done", "error"}


class JobCapacityError(RuntimeError):
    pass


def _claim_job_slot() -> None:
    global ACTIVE_JOBS_COUNT
    with ACTIVE_JOBS_LOCK:
        if ACTIVE_JOBS_COUNT >= max(1, MAX_ACTIVE_JOBS):
            raise JobCapacityError(f"Too many active jobs ({ACTIVE_JOBS_COUNT}/{MAX_ACTIVE_JOBS}). Wait for current jobs to finish.")
        ACTIVE_JOBS_COUNT += 1


def _release_job_slot() -> None:
    global ACTIVE_JOBS_COUNT
    with ACTIVE_JOBS_LOCK:
        ACTIVE_JOBS_COUNT = max(0, ACTIVE_JOBS_COUNT - 1)


def _cleanup_old_jobs(now: Optional[float] = None) -> int:
    now = time.time() if now is None else now
    removed = 0
    with REPORT_JOBS_LOCK:
        for job_id, job in list(REPORT_JOBS.items()):
            if str(job.get("state") or "") not in FINISHED_STATES:
                continue
            finished_at = float(job.get("finished_at") or job.get("started_at") or now)
            if (now - finished_at) > max(60, JOB_RETENTION_SECONDS):
                REPORT_JOBS.pop(job_id, None)
                removed += 1
    return removed


def _maybe_cleanup_jobs() -> None:
    global _LAST_JOB_CLEANUP_TS
    now = time.time()
    if (now - _LAST_JOB_CLEANUP_TS) < max(5, JOB_CLEANUP_INTERVAL_SECONDS):
        return
    removed = _cleanup_old_jobs(now)
    if removed:
        logger.info("Dropped %d finished report jobs", removed)
    _LAST_JOB_CLEANUP_TS = now


def _elapsed_seconds(started_at: float) -> int:
    return max(0, int(time.time() - float(started_at or time.time())))


def _normalize_progress(
    payload: Optional[dict],
    started_at: float,
    *,
    stage: str = "running",
    message: str = "Working",
) -> dict:
    raw = dict(payload or {})
    try:
        percent = int(float(raw.get("percent", 0)))
    except (TypeError, ValueError):
        percent = 0
    raw["stage"] = str(raw.get("stage") or stage)
    raw["message"] = str(raw.get("message") or message)
    raw["percent"] = max(0, min(100, percent))
    raw["current_item"] = str(raw.get("current_item") or raw.get("memento") or raw.get("current_url") or "")
    raw["elapsed_seconds"] = _elapsed_seconds(started_at)
    return raw


def _parse_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_year(value: object) -> Optional[int]:
    raw = str(value if value is not None else "").strip()
    try:
        return int(raw)
    except ValueError:
        return None


def _request_fields() -> dict:
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()


def _set_job(job_id: str, **changes: object) -> None:
    with REPORT_JOBS_LOCK:
        if job_id in REPORT_JOBS:
            REPORT_JOBS[job_id].update(changes)


def _start_report_job(
    target_url: str,
    year: str,
    month: str,
    day: str,
    archive_id: Optional[str],
    include_resources: bool,
    scan_scripts: bool,
) -> str:
    _claim_job_slot()
    job_id = uuid.uuid4().hex
    started_at = time.time()
    with REPORT_JOBS_LOCK:
        REPORT_JOBS[job_id] = {
            "state": "queued",
            "error": None,
            "error_kind": None,
            "started_at": started_at,
            "finished_at": None,
            "target_url": target_url,
            "archive": archive_id or "",
            "year": year,
            "month": month,
            "day": day,
            "progress": _normalize_progress({"message": "Job queued"}, started_at, stage="queued"),
            "result": None,
        }

    def _runner() -> None:
        def _update(payload: dict) -> None:
            _set_job(
                job_id,
                state="running",
                progress=_normalize_progress(payload, started_at, stage="report", message="Building report"),
            )

        try:
            report = tool.analyse(
                archive_id,
                target_url,
                year,
                month,
                day,
                include_resources=include_resources,
                scan_scripts=scan_scripts,
                progress_callback=_update,
            )
            _set_job(
                job_id,
                state="done",
                finished_at=time.time(),
                result=report.to_dict(),
                progress=_normalize_progress(
                    {"percent": 100, "memento": report.memento},
                    started_at,
                    stage="done",
                    message="Report completed",
                ),
            )
        except WastebackError as exc:
            logger.warning("Report job %s for %s failed: %s", job_id, target_url, exc)
            _set_job(
                job_id,
                state="error",
                finished_at=time.time(),
                error=str(exc),
                error_kind=exc.kind,
                progress=_normalize_progress({}, started_at, stage="error", message=str(exc)),
            )
        except Exception as exc:
            logger.exception("Report job %s for %s crashed", job_id, target_url)
            _set_job(
                job_id,
                state="error",
                finished_at=time.time(),
                error=str(exc),
                error_kind="error",
                progress=_normalize_progress({}, started_at, stage="error", message=str(exc)),
            )
        finally:
            _release_job_slot()

    thread = threading.Thread(target=_runner, daemon=True)
    thread.start()
    return job_id


@app.before_request
def _housekeeping() -> None:
    _maybe_cleanup_jobs()


@app.get("/")
def index():
    return jsonify(
        {
            "ok": True,
            "service": "Wasteback Machine",
            "endpoints": [
                "GET /archives",
                "GET /mementos",
                "POST /report/start",
                "GET /report/status/<job_id>",
                "GET /diagnostics",
            ],
        }
    )


@app.get("/archives")
def archives():
    return jsonify(
        {
            "ok": True,
            "archives": [{"id": archive_id, "name": name} for archive_id, name in describe_archives(tool.registry)],
        }
    )


@app.get("/mementos")
def mementos():
    target_url = request.args.get("target_url", "").strip()
    if not target_url:
        return jsonify({"ok": False, "error": "URL is required"}), 400
    start_year = _parse_year(request.args.get("start_year"))
    end_year = _parse_year(request.args.get("end_year"))
    try:
        found = tool.get_mementos(
            request.args.get("archive") or None,
            target_url,
            start_year=start_year,
            end_year=end_year,
        )
    except InputError as exc:
        return jsonify({"ok": False, "error": str(exc), "error_kind": exc.kind}), 400
    except WastebackError as exc:
        return jsonify({"ok": False, "error": str(exc), "error_kind": exc.kind}), 502
    return jsonify({"ok": True, "target_url": target_url, "mementos": found})


@app.post("/report/start")
def report_start():
    fields = _request_fields()
    target_url = str(fields.get("target_url") or "").strip()
    year = str(fields.get("year") or "").strip()
    if not target_url:
        return jsonify({"ok": False, "error": "URL is required"}), 400
    if not year:
        return jsonify({"ok": False, "error": "Year is required"}), 400
    try:
        job_id = _start_report_job(
            target_url,
            year,
            str(fields.get("month") or "01").strip(),
            str(fields.get("day") or "01").strip(),
            str(fields.get("archive") or "").strip() or None,
            _parse_bool(fields.get("include_resources"), default=False),
            _parse_bool(fields.get("scan_scripts"), default=False),
        )
    except JobCapacityError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 429
    return jsonify({"ok": True, "job_id": job_id})


@app.get("/report/status/<job_id>")
def report_status(job_id: str):
    with REPORT_JOBS_LOCK:
        job = REPORT_JOBS.get(job_id)
        job = dict(job) if job else None
    if not job:
        return jsonify({"ok": False, "error": "Job not found"}), 404
    return jsonify({"ok": True, **job})


def _jobs_state_counts() -> dict[str, int]:
    counts: dict[str, int] = {}
    with REPORT_JOBS_LOCK:
        for job in REPORT_JOBS.values():
            state = str(job.get("state") or "unknown")
            counts[state] = counts.get(state, 0) + 1
    return counts


@app.get("/diagnostics")
def diagnostics():
    return jsonify(
        {
            "ok": True,
            "config": {
                "host": os.environ.get("HOST", "127.0.0.1"),
                "port": int(os.environ.get("PORT", "5000")),
                "max_active_jobs": MAX_ACTIVE_JOBS,
                "job_retention_seconds": JOB_RETENTION_SECONDS,
                "max_workers": tool.max_workers,
                "archives": len(tool.registry),
            },
            "runtime": {
                "active_jobs": ACTIVE_JOBS_COUNT,
                "jobs": _jobs_state_counts(),
            },
        }
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "5000"))
    debug = _parse_bool(os.environ.get("FLASK_DEBUG"), default=False)
    app.run(host=host, port=port, debug=debug, use_reloader=False, threaded=True)
