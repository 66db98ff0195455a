from clipforge.models.job import Job
from clipforge.models.clip import Clip

__all__ = ["Job", "Clip"]
