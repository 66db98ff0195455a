import os
from typing import Union


class LocalStorage:
    """Job artifacts on the local filesystem: <base>/jobs/<job_id>/..."""

    def __init__(self, base_path: str):
        self.base_path = base_path

    @property
    def jobs_dir(self) -> str:
        return os.path.join(self.base_path, "jobs")

    @property
    def uploads_dir(self) -> str:
        return os.path.join(self.base_path, "uploads")

    def job_path(self, job_id: str, *parts: str) -> str:
        return os.path.join(self.jobs_dir, job_id, *parts)

    def upload_path(self, upload_id: str) -> str:
        return os.path.join(self.uploads_dir, upload_id)

    def ensure_job_dir(self, job_id: str) -> str:
        path = self.job_path(job_id)
        os.makedirs(path, exist_ok=True)
        return path

    def write_file(self, path: str, data: Union[str, bytes]) -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        if isinstance(data, str):
            data = data.encode("utf-8")
        with open(path, "wb") as f:
            f.write(data)

    def read_file(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def remove(self, path: str) -> None:
        if os.path.exists(path):
            os.remove(path)
