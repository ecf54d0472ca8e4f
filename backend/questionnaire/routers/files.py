# questionnaire/routers/files.py
"""
Object-storage variant: uploaded files, questionnaire submissions and their
emotion-classification results, each under its own key prefix.

A submission is recorded before classification starts; classification runs
as a background task and its failures never reach the client.
"""
from __future__ import annotations

import logging
import time
import uuid
from pathlib import PurePosixPath
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, File, Query, Request, UploadFile
from pydantic import BaseModel

from questionnaire.errors import NotFoundError, PersistenceError, UpstreamError, ValidationError
from questionnaire.services.emotion import EmotionClassifier
from questionnaire.services.storage import StorageBackend

router = APIRouter(tags=["files"])
logger = logging.getLogger(__name__)

FILES_PREFIX = "files"
RESPONSES_PREFIX = "responses"
RESULTS_PREFIX = "results"


# ---------- Models ----------

class SubmitIn(BaseModel):
    difficulty: Optional[Any] = None
    feelings: Optional[str] = None


# ---------- Helpers ----------

def _storage(request: Request) -> StorageBackend:
    return request.app.state.storage


def _safe_name(filename: Optional[str]) -> str:
    # drop any client-supplied directories
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    if not name or name in {".", ".."}:
        raise ValidationError("filename is required")
    return name


def _now_ms() -> int:
    return int(time.time() * 1000)


async def classify_submission(storage: StorageBackend, classifier: Optional[EmotionClassifier],
                              submission_id: str, text: str) -> None:
    """Best-effort enrichment: store the emotion result, or log why there is none."""
    if classifier is None:
        return
    try:
        result = await classifier.classify(text)
        storage.write_json(f"{RESULTS_PREFIX}/{submission_id}.json", {
            "id": submission_id,
            "ts": _now_ms(),
            **result,
        })
    except (UpstreamError, PersistenceError) as e:
        logger.warning("emotion classification skipped: %s", e, extra={"submission_id": submission_id})


# ---------- Routes ----------

@router.get("/files")
def list_files(request: Request):
    items = _storage(request).list_dir(FILES_PREFIX)
    return [
        {"name": it["key"].split("/", 1)[-1], "size": it["size"], "last_modified": it["last_modified"]}
        for it in items
    ]


@router.post("/files", status_code=201)
async def upload_file(request: Request, file: UploadFile = File(...)):
    name = _safe_name(file.filename)
    content = await file.read()
    location = _storage(request).write_file(f"{FILES_PREFIX}/{name}", content)
    logger.info("file uploaded", extra={"file_name": name, "size": len(content)})
    return {"ok": True, "name": name, "size": len(content), "path": location}


@router.delete("/file")
def delete_file(request: Request, filename: Optional[str] = Query(default=None)):
    if not filename:
        raise ValidationError("filename query param is required")
    name = _safe_name(filename)
    try:
        _storage(request).delete_file(f"{FILES_PREFIX}/{name}")
    except FileNotFoundError as e:
        raise NotFoundError(f"file {name} not found") from e
    return {"ok": True}


@router.post("/submit")
def submit(payload: SubmitIn, request: Request, background_tasks: BackgroundTasks):
    feelings = (payload.feelings or "").strip()
    if not feelings:
        raise ValidationError("feelings required")

    submission_id = uuid.uuid4().hex
    storage = _storage(request)
    storage.write_json(f"{RESPONSES_PREFIX}/{submission_id}.json", {
        "id": submission_id,
        "ts": _now_ms(),
        "difficulty": payload.difficulty,
        "feelings": feelings,
    })

    background_tasks.add_task(
        classify_submission, storage, request.app.state.classifier, submission_id, feelings
    )
    return {"ok": True, "id": submission_id}


@router.get("/results")
def list_results(request: Request):
    storage = _storage(request)
    results = []
    for it in storage.list_dir(RESULTS_PREFIX):
        try:
            results.append(storage.read_json(it["key"]))
        except FileNotFoundError:
            # deleted between list and read
            continue
    return results
