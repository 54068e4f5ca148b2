import random
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional
from contextlib import asynccontextmanager
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from config import API_KEY, API_KEY_HEADER, TRANSACTION_PATH

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Configuration
HOST = "0.0.0.0"
PORT = 8080
UNAVAILABLE_MESSAGE = "Service temporarily unavailable."


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# Pydantic Models
class InternalRequest(BaseModel):
    internalOrderId: Optional[str] = Field(default=None, description="Caller's unique order id")
    amount: Decimal = Field(..., gt=0, description="Transaction amount (positive)")
    currencyCode: str = Field(..., min_length=3, max_length=3, description="ISO 4217 currency code")
    serviceType: str = Field(..., min_length=1, description="Service to process externally")
    requestedAt: datetime = Field(..., description="When the caller created the request")


class InternalResponse(BaseModel):
    success: bool
    message: str
    internalReferenceId: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    error_rate: float
    total_transactions: int
    failed_transactions: int
    avg_processing_time: float
    failure_rate: float


class ChaosSettings(BaseModel):
    failure_rate: float = Field(..., ge=0, le=1, description="Share of requests answered with 503")


# Global variables for monitoring
processing_times = []
failed_count = 0
total_count = 0
failure_rate = 0.0
transaction_store: Dict[str, dict] = {}  # internalOrderId -> stored transaction


class ServiceUnavailable(Exception):
    pass


def reset_state():
    global failed_count, total_count, failure_rate
    store_size = len(transaction_store)
    transaction_store.clear()
    processing_times.clear()
    failed_count = 0
    total_count = 0
    failure_rate = 0.0
    return store_size


def record_processing_time(start_time: float):
    processing_times.append(time.time() - start_time)
    if len(processing_times) > 1000:
        processing_times.pop(0)


def process_transaction(request: InternalRequest) -> InternalResponse:
    """Store the transaction, answering replays of the same order id with the original reference"""
    if random.random() < failure_rate:
        raise ServiceUnavailable(f"Simulated outage for order {request.internalOrderId}")

    order_id = request.internalOrderId
    if order_id and order_id in transaction_store:
        existing = transaction_store[order_id]
        logger.info(f"Order {order_id} already processed as {existing['internalReferenceId']}")
        return InternalResponse(
            success=True,
            message="Transaction already processed",
            internalReferenceId=existing["internalReferenceId"],
        )

    reference_id = str(uuid.uuid4())
    transaction_store[order_id or reference_id] = {
        "internalReferenceId": reference_id,
        "receivedAt": utc_now_iso(),
        "request": request.model_dump(mode="json"),
    }
    return InternalResponse(
        success=True,
        message="Transaction processed successfully",
        internalReferenceId=reference_id,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan manager for FastAPI app"""
    logger.info(f"Starting mock middleware on port {PORT}")
    yield
    logger.info(f"Shutting down mock middleware ({total_count} transactions, {failed_count} failed)")


# FastAPI app
app = FastAPI(
    title="Mock Transaction Middleware",
    description="Local stand-in for the transaction middleware targeted by the load test",
    version="1.0.0",
    lifespan=lifespan
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For development only
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    global failed_count, total_count
    if request.url.path == TRANSACTION_PATH:
        failed_count += 1
        total_count += 1
    errors = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    logger.warning(f"Validation failed: {errors}")
    return JSONResponse(
        status_code=400,
        content=InternalResponse(success=False, message=errors).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=InternalResponse(success=False, message=str(exc.detail)).model_dump(),
    )


async def verify_api_key(api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER)):
    """Reject requests without the shared API key before the body is validated"""
    global failed_count, total_count
    if api_key == API_KEY:
        return

    failed_count += 1
    total_count += 1
    if not api_key:
        logger.warning("Rejected request: missing API key")
        raise HTTPException(status_code=401, detail="Missing API Key")
    logger.warning("Rejected request: invalid API key")
    raise HTTPException(status_code=401, detail="Invalid API Key")


@app.post(TRANSACTION_PATH, response_model=InternalResponse, dependencies=[Depends(verify_api_key)])
async def handle_transaction(transaction: InternalRequest):
    """Accept a transaction and answer 200 with its internal reference"""
    global failed_count, total_count
    start_time = time.time()

    logger.info(f"Received transaction {transaction.internalOrderId}")

    try:
        response = process_transaction(transaction)
    except ServiceUnavailable as e:
        logger.error(f"Transaction {transaction.internalOrderId} failed: {e}")
        failed_count += 1
        total_count += 1
        record_processing_time(start_time)
        raise HTTPException(status_code=503, detail=UNAVAILABLE_MESSAGE)

    total_count += 1
    record_processing_time(start_time)
    return response


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Service health and counters"""
    error_rate = (failed_count / max(total_count, 1)) * 100
    avg_processing_time = sum(processing_times) / len(processing_times) if processing_times else 0

    return HealthResponse(
        status="degraded" if failure_rate > 0 else "healthy",
        timestamp=datetime.now(timezone.utc),
        error_rate=round(error_rate, 2),
        total_transactions=total_count,
        failed_transactions=failed_count,
        avg_processing_time=round(avg_processing_time, 3),
        failure_rate=failure_rate,
    )


@app.get("/api/stats")
async def get_detailed_stats():
    """Get detailed service statistics"""
    currencies = {}
    for stored in transaction_store.values():
        code = stored["request"]["currencyCode"]
        currencies[code] = currencies.get(code, 0) + 1

    return {
        "transactions": {
            "stored": len(transaction_store),
            "by_currency": currencies,
        },
        "performance": {
            "total_processed": total_count,
            "total_failed": failed_count,
            "error_rate_percent": round((failed_count / max(total_count, 1)) * 100, 2),
            "avg_processing_time_seconds": round(sum(processing_times) / len(processing_times) if processing_times else 0, 3)
        },
        "config": {
            "transaction_path": TRANSACTION_PATH,
            "failure_rate": failure_rate,
        }
    }


@app.post("/api/chaos")
async def set_chaos(settings: ChaosSettings):
    """Set the share of transactions answered with 503 (for testing)"""
    global failure_rate
    failure_rate = settings.failure_rate
    logger.warning(f"Simulated failure rate set to {failure_rate:.0%}")
    return {"failure_rate": failure_rate}


@app.post("/api/cleanup")
async def cleanup_system():
    """Clear stored transactions and counters (for testing)"""
    store_size = reset_state()
    return {
        "message": "System cleaned up successfully",
        "cleared": {
            "transaction_store": store_size
        }
    }


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        log_level="info",
        access_log=True
    )
