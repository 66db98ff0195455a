from typing import TypeVar, Generic, Type, Optional, Any, Dict, List
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from clipforge.core.enums import ClipStatus, JobStage, JobStatus
from clipforge.db.base import Base
from clipforge.db.context import get_db_session

T = TypeVar("T", bound=Base)

class BaseRepository(Generic[T]):
    """Session-bound create/read/update for one model."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model

    def get_by_id(self, id: str) -> Optional[T]:
        return self.db.get(self.model, id)

    def create(self, **kwargs) -> T:
        if "id" not in kwargs:
            kwargs["id"] = str(uuid4())
        instance = self.model(**kwargs)
        self.db.add(instance)
        return instance

    def update(self, id: str, **patch) -> Optional[T]:
        instance = self.get_by_id(id)
        if instance is None:
            return None
        for key, value in patch.items():
            setattr(instance, key, value)
        return instance


class JobRepository(BaseRepository):
    """Jobs."""

    def __init__(self, db: Session):
        from clipforge.models import Job
        super().__init__(db, Job)


class ClipRepository(BaseRepository):
    """Clips, listed in creation order."""

    def __init__(self, db: Session):
        from clipforge.models import Clip
        super().__init__(db, Clip)

    def get_by_job(self, job_id: str):
        return self.db.query(self.model).filter(
            self.model.job_id == job_id
        ).order_by(self.model.created_at.asc()).all()


class JobStore:
    """
    Repository facade used by the pipeline.

    Each call runs in its own session scope and commits before returning, so
    progress written between stages is visible to other processes at once.
    Returned records are detached snapshots.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # -- jobs -----------------------------------------------------------

    def create_job(
        self,
        source_type: str,
        options: Dict[str, Any],
        source_url: Optional[str] = None,
        upload_id: Optional[str] = None,
    ):
        with get_db_session(self.session_factory) as db:
            return JobRepository(db).create(
                source_type=source_type,
                source_url=source_url,
                upload_id=upload_id,
                status=JobStatus.PENDING.value,
                stage=JobStage.QUEUED.value,
                progress=0,
                options=options,
            )

    def get_job(self, job_id: str):
        with get_db_session(self.session_factory) as db:
            return JobRepository(db).get_by_id(job_id)

    def update_job(self, job_id: str, **patch):
        with get_db_session(self.session_factory) as db:
            return JobRepository(db).update(job_id, **_plain(patch))

    # -- clips ----------------------------------------------------------

    def create_clip(self, job_id: str, start: float, end: float, score: float, reason: str):
        with get_db_session(self.session_factory) as db:
            return ClipRepository(db).create(
                job_id=job_id,
                start=start,
                end=end,
                score=score,
                reason=reason,
                status=ClipStatus.PENDING.value,
            )

    def get_clip(self, clip_id: str):
        with get_db_session(self.session_factory) as db:
            return ClipRepository(db).get_by_id(clip_id)

    def update_clip(self, clip_id: str, **patch):
        with get_db_session(self.session_factory) as db:
            return ClipRepository(db).update(clip_id, **_plain(patch))

    def list_clips(self, job_id: str) -> List:
        with get_db_session(self.session_factory) as db:
            return ClipRepository(db).get_by_job(job_id)


def _plain(patch: Dict[str, Any]) -> Dict[str, Any]:
    # Enum members are stored by value
    return {k: (v.value if isinstance(v, (JobStatus, JobStage, ClipStatus)) else v) for k, v in patch.items()}
