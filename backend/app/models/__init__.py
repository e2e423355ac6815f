from app.models.property import Property
from app.models.scraper_job import ScraperJob, ScraperRun, JobStatus
from app.models.saved_property import SavedProperty

__all__ = ["Property", "ScraperJob", "ScraperRun", "JobStatus", "SavedProperty"]
