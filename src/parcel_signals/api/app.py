from fastapi import FastAPI

from parcel_signals.api.routes.ingest import router as ingest_router
from parcel_signals.api.routes.parcels import router as parcels_router
from parcel_signals.sources import list_sources


def health():
    return {"status": "ok"}


app = FastAPI(title="parcel_signals")

app.include_router(ingest_router, prefix="/api")
app.include_router(parcels_router, prefix="/api")


@app.get("/api/health")
def health_route():
    return {**health(), "sources": list_sources()}
