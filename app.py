import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

import config
from errors import ExchangeError, OracleUnavailable, ParamsMissing
from exchange import ExchangeService
from ledger import LedgerClient
from storage import build_store

log = logging.getLogger(__name__)


# =========================
# Wiring
# =========================
def build_exchange() -> ExchangeService:
    store = build_store()
    store.connect()
    ledger = LedgerClient()
    try:
        ledger.connect()
    except OracleUnavailable as e:
        # stay up; every ledger-backed check will be denied until fixed
        log.error("Permission ledger not connected: %s", e.message)
    return ExchangeService(store, ledger)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.exchange = build_exchange()
    yield


def get_exchange(request: Request) -> ExchangeService:
    return request.app.state.exchange


# =========================
# Schemas
# =========================
class RetrieveIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # all optional: absent or wrongly typed fields fail after authentication, as ParamsMissing
    storage_address: Optional[str] = Field(None, alias="storageAddress")
    key: Optional[str] = None
    patient_address: Optional[str] = Field(None, alias="patientAddress")


def parse_retrieve_body(payload) -> RetrieveIn:
    if not isinstance(payload, dict):
        return RetrieveIn()
    return RetrieveIn.model_validate({k: v for k, v in payload.items() if isinstance(v, str)})


# =========================
# FastAPI app
# =========================
app = FastAPI(title="Encrypted Medical Record Exchange (wallet-signed, zero key custody)", lifespan=lifespan)


@app.exception_handler(ExchangeError)
async def exchange_error_handler(request: Request, exc: ExchangeError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in err.get("loc", ())) for err in exc.errors())
    err = ParamsMissing(f"Invalid request parameters: {fields}" if fields else None)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.get("/health")
def health():
    return {"status": "ok", "message": "Backend server is running"}


@app.get("/api/upload/status")
def upload_status(exchange: ExchangeService = Depends(get_exchange)):
    available = exchange.store_available()
    return {
        "backend": "ok",
        "store": "connected" if available else "disconnected",
        "message": "All systems operational" if available else "Storage service not available.",
    }


@app.post("/api/upload/medical-record")
def upload_medical_record(
    request: Request,
    file: Optional[UploadFile] = File(None),
    patient_address: Optional[str] = Form(None, alias="patientAddress"),
    exchange: ExchangeService = Depends(get_exchange),
):
    data = None
    if file is not None:
        # one byte past the limit is enough to reject oversize files
        data = file.file.read(exchange.max_upload_bytes + 1)
    result = exchange.upload(
        request.headers,
        data,
        patient_address,
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
    )
    return result.to_dict()


@app.post("/api/upload/retrieve")
async def retrieve_medical_record(
    request: Request,
    exchange: ExchangeService = Depends(get_exchange),
):
    # read leniently so authentication runs before any body validation
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    body = parse_retrieve_body(payload)
    result = await run_in_threadpool(
        exchange.retrieve, request.headers, body.storage_address, body.key, body.patient_address
    )
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={"Content-Disposition": f'inline; filename="{result.filename}"'},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host=config.HOST, port=config.PORT)
