from __future__ import annotations

import logging

import requests
from fastapi import APIRouter, HTTPException

from parcel_signals.api.schemas import IngestRequest, IngestResponse, ScoreRequest, ScoreResponse
from parcel_signals.errors import ConfigurationError
from parcel_signals.pipeline import ingest_jurisdiction, score_jurisdiction
from parcel_signals.settings import get_settings
from parcel_signals.sources import get_source
from parcel_signals.storage import ParcelStore


router = APIRouter(tags=["ingest"])

logger = logging.getLogger("parcel_signals.api")


def new_session() -> requests.Session:
    return requests.Session()


@router.post("/ingest", response_model=IngestResponse)
def ingest(req: IngestRequest) -> IngestResponse:
    try:
        adapter = get_source(req.jurisdiction)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    store = ParcelStore(get_settings().db_path)
    session = new_session()
    try:
        result = ingest_jurisdiction(
            store,
            adapter.jurisdiction,
            session=session,
            deadline_seconds=req.deadline_seconds,
            max_pages=req.max_pages,
        )
    finally:
        session.close()
        store.close()
    logger.info("ingest request jurisdiction=%s status=%s", result.jurisdiction, result.status)
    return IngestResponse(**result.to_dict())


@router.post("/score", response_model=ScoreResponse)
def score(req: ScoreRequest) -> ScoreResponse:
    try:
        adapter = get_source(req.jurisdiction)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    store = ParcelStore(get_settings().db_path)
    try:
        out = score_jurisdiction(store, adapter.jurisdiction)
    finally:
        store.close()
    return ScoreResponse(**out)
