from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

# Ensure session lifecycle logging is visible when running under uvicorn
logging.getLogger("rollmetrics").setLevel(logging.INFO)

from fastapi import Body, FastAPI, HTTPException
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse

from rollmetrics.config import METRICS_SCHEMA_VERSION
from rollmetrics.io_stream import parse_events
from rollmetrics.render import report_html
from rollmetrics.report import build_report_from_events, empty_report
from rollmetrics.signals import payload_from_landmarks
from rollmetrics.store import SessionStore, record_quality
from rollmetrics.types import FrameUpdatePayload, SessionRecord

logger = logging.getLogger("rollmetrics.web")

app = FastAPI(title="Rolling Session Metrics")

# One store per user (user_id -> SessionStore). Every read or write of a store holds the lock.
_STORES: dict[str, SessionStore] = {}
_STORE_LOCK = threading.RLock()
_MAX_USERS = 100
LIVE_MESSAGE_TYPES = ("start", "frame", "interrupt", "stop")


class StoreFull(Exception):
    pass


def _store_for(user_id: str, create: bool = False) -> Optional[SessionStore]:
    """Look up (or create) a user's store; when full, the oldest idle store is evicted."""
    with _STORE_LOCK:
        store = _STORES.get(user_id)
        if store is None and create:
            if len(_STORES) >= _MAX_USERS:
                idle = next((k for k, s in _STORES.items() if s.active is None), None)
                if idle is None:
                    raise StoreFull(f"{_MAX_USERS} sessions already active")
                del _STORES[idle]
            store = SessionStore()
            _STORES[user_id] = store
        return store


def _active_store(user_id: str) -> SessionStore:
    """Caller must hold _STORE_LOCK."""
    store = _store_for(user_id)
    if store is None or store.active is None:
        raise HTTPException(status_code=404, detail=f"No active session for user {user_id}")
    return store


def _frame_payload(body: dict[str, Any]) -> FrameUpdatePayload:
    """Accept either precomputed signals (camelCase) or raw landmarks."""
    if "landmarks" in body:
        return payload_from_landmarks(
            body.get("landmarks"),
            fps=body.get("fps"),
            rep_mode=body.get("repMode"),
            rep_increment=bool(body.get("repIncrement", False)),
        )
    data = body.get("payload", body)
    if not isinstance(data, dict):
        raise HTTPException(status_code=422, detail="payload must be an object")
    return FrameUpdatePayload.from_dict(data)


def _record_response(rec: SessionRecord) -> dict[str, Any]:
    return {"record": rec.to_dict(), "qualityFlag": record_quality(rec)}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/session-metrics")
def session_metrics_schema() -> dict[str, Any]:
    """Report shape with every leaf unmeasured; dashboards render this before the first session."""
    return {"schemaVersion": METRICS_SCHEMA_VERSION, "report": empty_report()}


@app.post("/sessions/start")
def start_session(body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    user_id = body.get("userId")
    if not user_id:
        raise HTTPException(status_code=422, detail="userId is required")
    with _STORE_LOCK:
        try:
            store = _store_for(str(user_id), create=True)
        except StoreFull as e:
            raise HTTPException(status_code=503, detail=str(e))
        try:
            tracker = store.start_session(
                str(user_id),
                model_complexity=int(body.get("modelComplexity", 1)),
                mirror_used=bool(body.get("mirrorUsed", False)),
            )
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"sessionId": tracker.rec.session_id, "startTs": tracker.rec.start_ts}


@app.post("/sessions/{user_id}/frame")
def session_frame(user_id: str, body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    payload = _frame_payload(body)
    with _STORE_LOCK:
        store = _active_store(user_id)
        store.update_frame(payload)
        return {"frameCount": store.active.rec.frame_count}


@app.post("/sessions/{user_id}/interrupt")
def session_interrupt(user_id: str) -> dict[str, Any]:
    with _STORE_LOCK:
        store = _active_store(user_id)
        store.interrupt()
        return {"interruptions": store.active.rec.interruptions}


@app.get("/sessions/{user_id}/kpis")
def session_kpis(user_id: str) -> dict[str, Any]:
    with _STORE_LOCK:
        store = _active_store(user_id)
        kpis = store.live_kpis()
        return {"sessionId": store.active.rec.session_id, "kpis": kpis.to_dict() if kpis else None}


@app.post("/sessions/{user_id}/finalize")
def session_finalize(user_id: str) -> dict[str, Any]:
    with _STORE_LOCK:
        rec = _active_store(user_id).end_session()
        if rec is None:
            raise HTTPException(status_code=404, detail=f"No active session for user {user_id}")
        return _record_response(rec)


@app.post("/sessions/{user_id}/discard")
def session_discard(user_id: str) -> dict[str, str]:
    with _STORE_LOCK:
        _active_store(user_id).discard_session()
        return {"status": "discarded"}


@app.get("/sessions/{user_id}/history")
def session_history(user_id: str) -> dict[str, Any]:
    with _STORE_LOCK:
        store = _store_for(user_id)
        records = store.history if store else []
        return {"sessions": [_record_response(r) for r in records]}


@app.get("/sessions/{user_id}/report", response_class=HTMLResponse)
def session_report(user_id: str) -> HTMLResponse:
    with _STORE_LOCK:
        store = _store_for(user_id)
        if store is None or not store.history:
            raise HTTPException(status_code=404, detail=f"No stored session for user {user_id}")
        record = store.history[0].to_dict()
    report = record.pop("report") or empty_report()
    return HTMLResponse(report_html(report, source="live", record=record))


@app.post("/reports/from-events")
def report_from_events(body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    rows = body.get("events")
    if not isinstance(rows, list):
        raise HTTPException(status_code=422, detail="events must be a list")
    events = parse_events(rows)
    start_at = body.get("startAt")
    end_at = body.get("endAt")
    if start_at is None:
        start_at = min((ev.ts for ev in events), default=0.0)
    if end_at is None:
        end_at = max((ev.ts for ev in events), default=start_at)
    errors: list[str] = []
    report = build_report_from_events(events, float(start_at), float(end_at), errors=errors)
    return {"schemaVersion": METRICS_SCHEMA_VERSION, "report": report, "errors": errors}


@app.websocket("/ws/live")
async def live_socket(websocket: WebSocket) -> None:
    """
    Messages: {"type": "start", "userId", ...}, {"type": "frame", ...} (signals or
    landmarks), {"type": "interrupt"}, {"type": "stop", "save": true}.
    Each frame is answered with the live KPIs; stop answers with the stored record.
    """
    await websocket.accept()
    user_id: Optional[str] = None
    frame_idx = 0
    try:
        while True:
            msg = await websocket.receive_text()
            try:
                payload = json.loads(msg)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict):
                continue
            msg_type = payload.get("type", "frame")
            if msg_type not in LIVE_MESSAGE_TYPES:
                continue

            if msg_type == "start":
                user_id = str(payload.get("userId") or "anonymous")
                try:
                    with _STORE_LOCK:
                        tracker = _store_for(user_id, create=True).start_session(
                            user_id,
                            model_complexity=int(payload.get("modelComplexity", 1)),
                            mirror_used=bool(payload.get("mirrorUsed", False)),
                        )
                        session_id = tracker.rec.session_id
                except (StoreFull, TypeError, ValueError) as e:
                    user_id = None
                    await websocket.send_text(json.dumps({"type": "error", "detail": str(e)}))
                    continue
                logger.info("live: session started %s", session_id)
                await websocket.send_text(json.dumps({"type": "started", "sessionId": session_id}))
                continue

            try:
                frame = _frame_payload(payload) if msg_type == "frame" else None
                with _STORE_LOCK:
                    if user_id is None:
                        raise HTTPException(status_code=404, detail="no active session")
                    store = _active_store(user_id)
                    if msg_type == "stop":
                        if payload.get("save", True):
                            reply = {"type": "report", **_record_response(store.end_session())}
                        else:
                            store.discard_session()
                            reply = None
                    elif msg_type == "interrupt":
                        store.interrupt()
                        reply = None
                    else:
                        store.update_frame(frame)
                        kpis = store.live_kpis()
                        reply = {"type": "kpis", "kpis": kpis.to_dict() if kpis else None}
            except HTTPException as e:
                await websocket.send_text(json.dumps({"type": "error", "detail": e.detail}))
                continue

            if msg_type == "stop":
                logger.info("live: stop received, frames=%s", frame_idx)
                if reply is not None:
                    await websocket.send_text(json.dumps(reply))
                await websocket.close()
                return
            if reply is not None:
                if frame_idx == 0:
                    logger.info("live: first frame received")
                frame_idx += 1
                await websocket.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        logger.info("live: client disconnected (frames=%s)", frame_idx)
        if user_id is not None:
            with _STORE_LOCK:
                store = _store_for(user_id)
                if store is not None:
                    store.interrupt()
        return


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("web_app:app", host="0.0.0.0", port=8000, reload=True)
