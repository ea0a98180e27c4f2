"""
Job records for duplicate-submission suppression.

A (client_id, job_id) pair maps to one JSON record in the content store. There
is no locking: two writers racing on the same job resolve last-writer-wins.
"""
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from render_api.core.errors import WriteResult
from render_api.schemas.render import JobStatus
from render_api.services.content_store import ContentStore, clean_path

logger = logging.getLogger(__name__)


@dataclass
class JobRecord:
    client_id: str
    job_id: str
    status: JobStatus
    started_at: float
    finished_at: Optional[float] = None
    upload_id: Optional[str] = None
    cache_key: Optional[str] = None
    result_url: Optional[str] = None
    is_temporary_url: bool = False
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRecord":
        if not isinstance(data, dict):
            raise ValueError("job record is not an object")
        return cls(
            client_id=str(data["client_id"]),
            job_id=str(data["job_id"]),
            status=JobStatus(data["status"]),
            started_at=float(data["started_at"]),
            finished_at=float(data["finished_at"]) if data.get("finished_at") is not None else None,
            upload_id=data.get("upload_id"),
            cache_key=data.get("cache_key"),
            result_url=data.get("result_url"),
            is_temporary_url=bool(data.get("is_temporary_url", False)),
            error_message=data.get("error_message"),
        )


@dataclass
class JobCheck:
    """Outcome of checking for a prior submission: done, in_progress or absent"""

    state: str
    record: Optional[JobRecord] = None

    @property
    def is_done(self) -> bool:
        return self.state == "done"

    @property
    def is_in_progress(self) -> bool:
        return self.state == "in_progress"


class JobTracker:
    def __init__(self, store: ContentStore, prefix: str = "jobs", stale_after_seconds: float = 180.0, clock=time.time):
        self.backend = store
        self.prefix = prefix.strip("/")
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock

    def _path(self, client_id: str, job_id: str) -> str:
        return clean_path(f"{self.prefix}/{client_id}/{job_id}.json")

    async def _write(self, record: JobRecord) -> WriteResult:
        try:
            payload = json.dumps(record.to_dict(), ensure_ascii=False).encode("utf-8")
            await self.backend.put(self._path(record.client_id, record.job_id), payload, content_type="application/json", public=False)
        except Exception as e:
            logger.warning(f"Job record write failed for {record.client_id}/{record.job_id}: {e}")
            return WriteResult.failure(e)
        return WriteResult.success()

    async def get(self, client_id: str, job_id: str) -> Optional[JobRecord]:
        """Read a job record; unreadable or malformed records read as None."""
        try:
            raw = await self.backend.get(self._path(client_id, job_id))
        except Exception as e:
            logger.warning(f"Job record read failed for {client_id}/{job_id}: {e}")
            return None
        if raw is None:
            return None
        try:
            return JobRecord.from_dict(json.loads(raw))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring malformed job record {client_id}/{job_id}: {e}")
            return None

    async def begin(
        self,
        client_id: str,
        job_id: str,
        cache_key: Optional[str] = None,
        upload_id: Optional[str] = None,
    ) -> WriteResult:
        record = JobRecord(
            client_id=client_id,
            job_id=job_id,
            status=JobStatus.RUNNING,
            started_at=self._clock(),
            upload_id=upload_id,
            cache_key=cache_key,
        )
        return await self._write(record)

    async def check_existing(self, client_id: str, job_id: str) -> JobCheck:
        record = await self.get(client_id, job_id)
        if record is None:
            return JobCheck("absent")
        if record.status == JobStatus.DONE and record.result_url:
            return JobCheck("done", record)
        if record.status == JobStatus.RUNNING:
            age = self._clock() - record.started_at
            if age < self.stale_after_seconds:
                return JobCheck("in_progress", record)
            logger.info(f"Job {client_id}/{job_id} running for {age:.0f}s, treating as abandoned")
        return JobCheck("absent", record)

    async def finish(
        self,
        client_id: str,
        job_id: str,
        result_url: Optional[str] = None,
        is_temporary_url: bool = False,
        error_message: Optional[str] = None,
        cache_key: Optional[str] = None,
        upload_id: Optional[str] = None,
    ) -> WriteResult:
        """Terminal write: done when result_url is given, failed otherwise."""
        previous = await self.get(client_id, job_id)
        now = self._clock()
        record = JobRecord(
            client_id=client_id,
            job_id=job_id,
            status=JobStatus.DONE if result_url else JobStatus.FAILED,
            started_at=previous.started_at if previous else now,
            finished_at=now,
            upload_id=upload_id or (previous.upload_id if previous else None),
            cache_key=cache_key or (previous.cache_key if previous else None),
            result_url=result_url,
            is_temporary_url=is_temporary_url if result_url else False,
            error_message=None if result_url else (error_message or "generation failed"),
        )
        return await self._write(record)
