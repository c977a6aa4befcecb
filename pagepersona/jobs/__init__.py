from pagepersona.jobs.manager import JobManager, compute_job_id
from pagepersona.jobs.models import JobRecord, JobStage, JobStatus
from pagepersona.jobs.runner import JobRunner

__all__ = ["JobManager", "JobRecord", "JobRunner", "JobStage", "JobStatus", "compute_job_id"]
