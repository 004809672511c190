from typing import Any, Dict, List, Literal, Optional
import io
import os
import math
import time
import json
import uuid
import logging
from collections import defaultdict, deque
from datetime import date, datetime

from fastapi import FastAPI, UploadFile, File, Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from csv_export import build_csv_text, export_filename
from file_ingest import IngestionError, UnsupportedFileTypeError, detect_format
from filters import STATUS_COLUMN, get_filter, parse_filter
from records import STATUSES, Record, summary_card
from schema_detect import find_field
from session import CandidateSession
from xlsx_export import build_xlsx_bytes


app = FastAPI(title="Candidate dashboard")
bearer = HTTPBearer(auto_error=True)

app.state.session = CandidateSession()

# --- Config ---
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))  # 20MB default

RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "30"))          # requests
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))    # seconds

UPLOAD_PATHS = ("/dataset",)

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

logger = logging.getLogger("candidates")

# ip -> timestamps
_req_times = defaultdict(deque)


def require_token(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> None:
    expected = os.getenv("CANDIDATES_API_KEY")
    token = creds.credentials
    if not expected or token != expected:
        raise HTTPException(status_code=401, detail="Invalid token")


def get_session(request: Request) -> CandidateSession:
    return request.app.state.session


def _client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# -----------------------------
# Request logging middleware
# -----------------------------
@app.middleware("http")
async def request_logging(request: Request, call_next):
    start = time.time()
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid

    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        response.headers["X-Request-Id"] = rid
        return response

    except Exception as exc:
        status = 500
        logger.exception(json.dumps({
            "event": "request_exception",
            "request_id": rid,
            "method": request.method,
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error": str(exc),
        }))
        response = JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error"},
        )
        response.headers["X-Request-Id"] = rid
        return response

    finally:
        duration_ms = int((time.time() - start) * 1000)
        logger.info(json.dumps({
            "event": "request",
            "request_id": rid,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "duration_ms": duration_ms,
        }))


@app.middleware("http")
async def limit_upload_size(request: Request, call_next):
    if request.url.path in UPLOAD_PATHS and request.method.upper() == "POST":
        cl = request.headers.get("content-length")
        if cl is not None:
            try:
                too_large = int(cl) > MAX_UPLOAD_BYTES
            except ValueError:
                return JSONResponse(status_code=400, content={"detail": "Invalid Content-Length"})
            if too_large:
                return JSONResponse(status_code=413, content={"detail": "Upload too large"})
    return await call_next(request)


@app.middleware("http")
async def basic_rate_limit(request: Request, call_next):
    if request.url.path in UPLOAD_PATHS and request.method.upper() == "POST":
        ip = _client_ip(request)
        now = time.time()
        q = _req_times[ip]

        cutoff = now - RATE_LIMIT_WINDOW
        while q and q[0] < cutoff:
            q.popleft()

        if len(q) >= RATE_LIMIT_MAX:
            return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})

        q.append(now)

    return await call_next(request)


# -----------------------------
# JSON helpers
# -----------------------------
def _json_sanitize(x: Any) -> Any:
    """NaN/Inf -> None, datetimes -> ISO strings, containers recursively."""
    if hasattr(x, "item") and callable(getattr(x, "item")):
        try:
            x = x.item()
        except Exception:
            pass

    if x is None or isinstance(x, (bool, int, str)):
        return x

    if isinstance(x, float):
        return x if math.isfinite(x) else None

    if isinstance(x, (datetime, date)):
        return x.isoformat()

    if isinstance(x, dict):
        return {str(k): _json_sanitize(v) for k, v in x.items()}

    if isinstance(x, (list, tuple, set)):
        return [_json_sanitize(v) for v in x]

    if isinstance(x, (bytes, bytearray)):
        try:
            return x.decode("utf-8")
        except Exception:
            return str(x)

    return str(x)


def _record_json(r: Record) -> Dict[str, Any]:
    return _json_sanitize(r.model_dump())


def _filters_json(session: CandidateSession) -> List[Dict[str, Any]]:
    return [f.model_dump(mode="json") for f in session.filters]


def _schema_json(session: CandidateSession) -> List[Dict[str, Any]]:
    return [f.model_dump() for f in session.schema]


# -----------------------------
# Request bodies
# -----------------------------
class StatusRequest(BaseModel):
    status: Literal["hired", "not-hired", "consideration", "pending"]


class NoteRequest(BaseModel):
    text: str


class TagRequest(BaseModel):
    tag: str


class ColumnOverrideRequest(BaseModel):
    visible: Optional[bool] = None
    primary: Optional[bool] = None


class FilterValueRequest(BaseModel):
    value: Any = None


# -----------------------------
# Ingestion
# -----------------------------
@app.post("/dataset")
async def upload_dataset(
    file: UploadFile = File(...),
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    try:
        detect_format(file.filename)
    except UnsupportedFileTypeError as e:
        raise HTTPException(status_code=415, detail=str(e))

    raw_bytes = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(raw_bytes) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Upload too large")
    if not raw_bytes:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        outcome = await run_in_threadpool(session.ingest, raw_bytes, file.filename)
    except IngestionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "installed": outcome.installed,
        "superseded": not outcome.installed,
        "generation": outcome.generation,
        "records": outcome.record_count,
        "fields": outcome.field_count,
        "message": f"Loaded {outcome.record_count} candidates with {outcome.field_count} fields",
    }


# -----------------------------
# Schema
# -----------------------------
@app.get("/schema")
def get_schema(
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    return {"fields": _schema_json(session)}


@app.patch("/schema/{column}")
def override_column(
    column: str,
    body: ColumnOverrideRequest,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    if find_field(session.schema, column) is None:
        raise HTTPException(status_code=404, detail=f"Column '{column}' not found")
    if body.visible is not None:
        session.set_column_visibility(column, body.visible)
    if body.primary is not None:
        session.set_column_primary(column, body.primary)
    return find_field(session.schema, column).model_dump()


# -----------------------------
# Records
# -----------------------------
@app.get("/records")
def list_records(
    search: Optional[str] = None,
    view: Literal["full", "cards"] = "full",
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    state = session.snapshot
    schema = state.schema
    records = session.filtered_records(search=search, state=state)
    if view == "cards":
        items = [_json_sanitize(summary_card(r, schema)) for r in records]
    else:
        items = [_record_json(r) for r in records]
    return {
        "total": len(state.records),
        "count": len(items),
        "records": items,
    }


@app.get("/records/{record_id}")
def get_record(
    record_id: str,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    r = session.get_record(record_id)
    if r is None:
        raise HTTPException(status_code=404, detail=f"Record '{record_id}' not found")
    return _record_json(r)


def _annotated(session: CandidateSession, record_id: str) -> Dict[str, Any]:
    r = session.get_record(record_id)
    return {"record": _record_json(r) if r is not None else None}


@app.put("/records/{record_id}/status")
def put_status(
    record_id: str,
    body: StatusRequest,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    session.set_status(record_id, body.status)
    return _annotated(session, record_id)


@app.post("/records/{record_id}/notes")
def post_note(
    record_id: str,
    body: NoteRequest,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    session.add_note(record_id, body.text)
    return _annotated(session, record_id)


@app.post("/records/{record_id}/tags")
def post_tag(
    record_id: str,
    body: TagRequest,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    session.add_tag(record_id, body.tag)
    return _annotated(session, record_id)


@app.delete("/records/{record_id}/tags/{tag}")
def delete_tag(
    record_id: str,
    tag: str,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    session.remove_tag(record_id, tag)
    return _annotated(session, record_id)


@app.get("/statuses")
def list_statuses(_=Depends(require_token)) -> Dict[str, Any]:
    return {"statuses": STATUSES}


# -----------------------------
# Filters
# -----------------------------
@app.get("/filters")
def list_filters(
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    return {"filters": _filters_json(session)}


@app.get("/filters/available")
def available_columns(
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    return {"columns": [f.name for f in session.available_filter_columns()]}


@app.post("/filters")
def add_filter(
    body: dict,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    """
    Either a fully tagged filter ({"kind": ..., "column": ..., "value": ...})
    or {"column": ..., "value": ...} resolved against the schema. Omitting
    "value" installs the column's default filter; "multi_select": true builds
    a membership filter over the column's options.
    """
    column = body.get("column")
    if not column:
        raise HTTPException(status_code=400, detail="column required")
    if column != STATUS_COLUMN and find_field(session.schema, column) is None:
        raise HTTPException(status_code=404, detail=f"Column '{column}' not found")

    try:
        if "kind" in body:
            session.add_filter(parse_filter(body))
        else:
            session.add_filter_for(
                column,
                body.get("value"),
                use_default="value" not in body,
                multi_select=bool(body.get("multi_select")),
            )
    except (ValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid filter: {e}")

    return {"filters": _filters_json(session)}


@app.patch("/filters/{column}")
def update_filter(
    column: str,
    body: FilterValueRequest,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    if get_filter(session.filters, column) is None:
        raise HTTPException(status_code=404, detail=f"No filter on '{column}'")
    try:
        session.update_filter(column, body.value)
    except (ValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid filter: {e}")
    return {"filters": _filters_json(session)}


@app.delete("/filters/{column}")
def delete_filter(
    column: str,
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    session.remove_filter(column)
    return {"filters": _filters_json(session)}


@app.delete("/filters")
def clear_filters(
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    session.clear_filters()
    return {"filters": []}


# -----------------------------
# Analytics + export
# -----------------------------
@app.get("/analytics")
def analytics(
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
) -> Dict[str, Any]:
    return session.analytics()


@app.get("/export.csv")
def export_csv(
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
):
    state = session.snapshot
    records = session.filtered_records(state=state)
    text = build_csv_text(records, state.schema)
    filename = export_filename()
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=text, media_type="text/csv; charset=utf-8", headers=headers)


@app.get("/export.xlsx")
def export_xlsx(
    session: CandidateSession = Depends(get_session),
    _=Depends(require_token),
):
    state = session.snapshot
    records = session.filtered_records(state=state)
    try:
        xlsx_bytes = build_xlsx_bytes(records, state.schema)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"XLSX build failed: {e}")

    filename = export_filename(extension="xlsx")
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(
        io.BytesIO(xlsx_bytes),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers=headers,
    )


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
