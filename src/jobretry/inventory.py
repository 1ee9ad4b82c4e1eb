from __future__ import annotations

import logging

from .app_logging import log_with_fields
from .models import Credential, Job
from .remote import BackupServiceClient


class JobInventory:
    def __init__(self, client: BackupServiceClient, logger: logging.Logger, page_size: int = 200) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.client = client
        self.logger = logger
        self.page_size = page_size

    def list_jobs(self, credential: Credential) -> tuple[Job, ...]:
        jobs: list[Job] = []
        seen_ids: set[str] = set()
        skip = 0
        while True:
            page, total = self.client.list_jobs_page(credential, skip=skip, limit=self.page_size)
            added = 0
            for job in page:
                if job.job_id in seen_ids:
                    log_with_fields(
                        self.logger,
                        logging.WARNING,
                        "inventory_duplicate_ignored",
                        job_id=job.job_id,
                        job_name=job.name,
                    )
                    continue
                seen_ids.add(job.job_id)
                jobs.append(job)
                added += 1

            skip += len(page)
            if len(page) < self.page_size:
                break
            # a full page of already-seen ids means the service ignored skip
            if added == 0:
                break
            if total is not None and skip >= total:
                break

        log_with_fields(self.logger, logging.INFO, "inventory_listed", job_count=len(jobs))
        return tuple(jobs)
