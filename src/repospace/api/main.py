"""
FastAPI entrypoint for the local repository archive.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .dependencies import require_api_key
from .jobs import SaveJob, SaveJobRegistry
from ..exceptions import RepoSpaceError
from ..logger import configure_logging, get_logger
from ..models import ArchiveManifest, Coordinate, RepositorySummary, SaveResult
from ..services import ArchiveManager, SaveCallbacks
from ..settings import settings
from ..utils import format_file_size
from ..version import __version__

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    # Closes the GitHub client opened by searches and saves.
    await manager.aclose()


app = FastAPI(title="RepoSpace", version=__version__, lifespan=lifespan)
manager = ArchiveManager()
index = manager.index
jobs = SaveJobRegistry()
# Saves read-modify-write the shared index; run them one at a time.
save_lock = asyncio.Lock()


class RepoResponse(BaseModel):
    full_name: str
    clone_url: str
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    category: Optional[str] = None
    saved_at: Optional[str] = None
    local_path: Optional[str] = None


class ManifestResponse(BaseModel):
    repo_name: str
    downloaded_at: str
    file_count: int
    total_size: int


class SaveRequest(BaseModel):
    full_name: str
    category: Optional[str] = None
    clone_url: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    stars: Optional[int] = None


class SaveResponse(BaseModel):
    added: bool
    full_name: str
    category: str
    path: str
    manifest: Optional[ManifestResponse] = None


class ExistsResponse(BaseModel):
    full_name: str
    exists: bool
    categories: List[str]


class UsageResponse(BaseModel):
    total_size: int
    total_size_human: str
    repo_count: int
    base_path: str


class JobResponse(BaseModel):
    id: str
    full_name: str
    category: str
    status: str
    stage: Optional[str]
    files_fetched: int
    files_written: int
    last_file: Optional[str]
    result: Optional[SaveResponse]
    error: Optional[str]
    duration_ms: float
    created_at: datetime
    updated_at: datetime


@app.exception_handler(RepoSpaceError)
async def archive_error_handler(_request: Request, exc: RepoSpaceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "retriable": exc.retriable},
    )


@app.get("/healthz")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get(
    "/search", response_model=List[RepoResponse], dependencies=[Depends(require_api_key)]
)
async def search(q: str, page: int = 1) -> List[RepoResponse]:
    if not q.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Query cannot be empty."
        )
    results = await manager.source.search(q, page=page)
    return [_repo_to_response(repo) for repo in results]


@app.get(
    "/repos", response_model=List[RepoResponse], dependencies=[Depends(require_api_key)]
)
def list_repositories(category: Optional[str] = None) -> List[RepoResponse]:
    if category is not None:
        repos = index.list_by_category(category)
    else:
        entries = index.list()
        repos = [repo for name in sorted(entries) for repo in entries[name]]
    return [_repo_to_response(repo) for repo in repos]


@app.get(
    "/categories", response_model=List[str], dependencies=[Depends(require_api_key)]
)
def list_categories() -> List[str]:
    return index.categories()


@app.post(
    "/repos", response_model=SaveResponse, dependencies=[Depends(require_api_key)]
)
async def save_repository(request: SaveRequest) -> SaveResponse:
    summary = await _summary_for(request)
    async with save_lock:
        result = await manager.save(summary, request.category)
    return _result_to_response(result)


@app.post(
    "/jobs/save", response_model=JobResponse, dependencies=[Depends(require_api_key)]
)
async def enqueue_save(request: SaveRequest, background_tasks: BackgroundTasks) -> JobResponse:
    # Validate inputs up front so failures bubble to the client immediately.
    category = manager.path_policy.category_name(request.category)
    manager.path_policy.resolve(request.full_name, category)
    job = jobs.create(request.full_name, category)
    background_tasks.add_task(_run_save_job, job.id, request)
    return _job_to_response(job)


@app.get(
    "/jobs", response_model=List[JobResponse], dependencies=[Depends(require_api_key)]
)
def list_jobs() -> List[JobResponse]:
    return [_job_to_response(job) for job in jobs.list()]


@app.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    dependencies=[Depends(require_api_key)],
)
def get_job(job_id: str) -> JobResponse:
    job = jobs.get(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Job not found"
        )
    return _job_to_response(job)


@app.get(
    "/repos/{owner}/{name}/stats",
    response_model=ManifestResponse,
    dependencies=[Depends(require_api_key)],
)
async def repository_stats(owner: str, name: str, category: Optional[str] = None) -> ManifestResponse:
    manifest = await manager.stats(f"{owner}/{name}", category)
    if manifest is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No archive found"
        )
    return _manifest_to_response(manifest)


@app.get(
    "/repos/{owner}/{name}/files",
    response_model=List[str],
    dependencies=[Depends(require_api_key)],
)
async def repository_files(owner: str, name: str, category: Optional[str] = None) -> List[str]:
    return await manager.list_files(f"{owner}/{name}", category)


@app.get(
    "/repos/{owner}/{name}/exists",
    response_model=ExistsResponse,
    dependencies=[Depends(require_api_key)],
)
async def repository_exists(owner: str, name: str, category: Optional[str] = None) -> ExistsResponse:
    full_name = f"{owner}/{name}"
    return ExistsResponse(
        full_name=full_name,
        exists=await manager.exists(full_name, category),
        categories=await manager.locate(full_name),
    )


@app.delete(
    "/repos/{owner}/{name}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_api_key)],
)
async def remove_repository(owner: str, name: str, category: Optional[str] = None) -> None:
    async with save_lock:
        await manager.remove(f"{owner}/{name}", category)


@app.get(
    "/usage", response_model=UsageResponse, dependencies=[Depends(require_api_key)]
)
async def storage_usage() -> UsageResponse:
    usage = await manager.usage()
    return UsageResponse(
        total_size=usage.total_size_bytes,
        total_size_human=format_file_size(usage.total_size_bytes),
        repo_count=usage.repo_count,
        base_path=str(usage.base_path),
    )


async def _summary_for(request: SaveRequest) -> RepositorySummary:
    """Use the caller's summary when it is complete, otherwise ask the source."""
    manager.path_policy.directory_name(request.full_name)
    if request.clone_url:
        return RepositorySummary(
            full_name=request.full_name,
            clone_url=request.clone_url,
            description=request.description,
            language=request.language,
            stars=request.stars or 0,
        )
    coordinate = Coordinate.parse(request.full_name)
    return await manager.source.get_repository(coordinate.owner, coordinate.name)


async def _run_save_job(job_id: str, request: SaveRequest) -> None:
    jobs.start(job_id)
    try:
        summary = await _summary_for(request)
        callbacks = SaveCallbacks(
            stage=lambda stage: jobs.update_stage(job_id, stage),
            file_fetched=lambda path: jobs.file_fetched(job_id, path),
            file_written=lambda path: jobs.file_written(job_id, path),
        )
        async with save_lock:
            result = await manager.save(summary, request.category, callbacks=callbacks)
        jobs.complete(job_id, _result_to_response(result).model_dump())
    except RepoSpaceError as exc:
        log.error("save_job_failed", job_id=job_id, repo=request.full_name, error=str(exc))
        jobs.fail(job_id, error=str(exc))
    except Exception as exc:  # pragma: no cover - unexpected failures still end the job
        log.exception("save_job_crashed", job_id=job_id, repo=request.full_name)
        jobs.fail(job_id, error=str(exc))


def _repo_to_response(repo: RepositorySummary) -> RepoResponse:
    return RepoResponse(
        full_name=repo.full_name,
        clone_url=repo.clone_url,
        description=repo.description,
        language=repo.language,
        stars=repo.stars,
        category=repo.category,
        saved_at=repo.saved_at,
        local_path=repo.local_path,
    )


def _manifest_to_response(manifest: ArchiveManifest) -> ManifestResponse:
    return ManifestResponse(
        repo_name=manifest.repo_name,
        downloaded_at=manifest.downloaded_at,
        file_count=manifest.file_count,
        total_size=manifest.total_size_bytes,
    )


def _result_to_response(result: SaveResult) -> SaveResponse:
    return SaveResponse(
        added=result.added,
        full_name=result.full_name,
        category=result.category,
        path=str(result.path),
        manifest=_manifest_to_response(result.manifest) if result.manifest else None,
    )


def _job_to_response(job: SaveJob) -> JobResponse:
    return JobResponse(
        id=job.id,
        full_name=job.full_name,
        category=job.category,
        status=job.status,
        stage=job.stage,
        files_fetched=job.files_fetched,
        files_written=job.files_written,
        last_file=job.last_file,
        result=SaveResponse(**job.result) if job.result else None,
        error=job.error,
        duration_ms=job.duration_ms(),
        created_at=datetime.fromtimestamp(job.created_at),
        updated_at=datetime.fromtimestamp(job.updated_at),
    )


def run() -> None:
    """CLI entrypoint to run the FastAPI server."""
    configure_logging()
    uvicorn.run(
        "repospace.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
