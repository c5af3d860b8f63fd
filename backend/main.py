from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from logging_setup import setup_logging
from models import EventFilters
from repo_events import EventRepo
from service_aggregations import AggregationService
from service_events import EventService
from settings import settings

logger = setup_logging()

# Instantiate the repo + services here so the routes remain thin and
# replaceable for testing: tests swap `svc` / `agg` for instances bound
# to a temporary database.
repo = EventRepo()
svc = EventService(repo)
agg = AggregationService(repo)


@asynccontextmanager
async def lifespan(app: FastAPI):
    svc.repo.init_schema()
    logger.info("Ingestion backend started and schema ensured")
    yield


app = FastAPI(title="Event Ingestion Backend", lifespan=lifespan)


@app.get("/health")
def health():
    try:
        svc.health_check()
        return {"ok": True}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"DB health check failed: {e}")


@app.post("/events")
def ingest(event: Dict[str, Any] = Body(...), simulate_failure: bool = False):
    inject = simulate_failure and settings.allow_fault_injection
    result = svc.ingest_event(event, simulate_failure=inject)
    return JSONResponse(
        status_code=result.http_status,
        content=result.model_dump(mode="json", exclude={"http_status"}),
    )


@app.get("/events")
def list_events(
    client_id: Optional[str] = None,
    status: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1),
):
    filters = EventFilters(
        client_id=client_id, status=status, start_date=start_date, end_date=end_date
    )
    try:
        return {"success": True, "events": svc.get_events(filters, limit)}
    except Exception as e:
        logger.exception("Listing events failed")
        raise HTTPException(status_code=500, detail=f"Listing events failed: {e}")


@app.get("/events/failed")
def list_failed_events(limit: Optional[int] = Query(default=None, ge=1)):
    try:
        return {"success": True, "events": svc.get_failed_events(limit)}
    except Exception as e:
        logger.exception("Listing failed events failed")
        raise HTTPException(status_code=500, detail=f"Listing failed events failed: {e}")


@app.get("/aggregations")
def aggregations(
    client_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    filters = EventFilters(client_id=client_id, start_date=start_date, end_date=end_date)
    try:
        return {"success": True, "aggregations": agg.get_aggregations(filters)}
    except Exception as e:
        logger.exception("Aggregation failed")
        raise HTTPException(status_code=500, detail=f"Aggregation failed: {e}")


@app.get("/stats")
def stats():
    try:
        return {"success": True, "stats": svc.get_stats()}
    except Exception as e:
        logger.exception("Stats failed")
        raise HTTPException(status_code=500, detail=f"Stats failed: {e}")
