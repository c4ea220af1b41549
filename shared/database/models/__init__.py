from .article import Article
from .job_run import JobRun

__all__ = ["Article", "JobRun"]
