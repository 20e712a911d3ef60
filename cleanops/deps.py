from __future__ import annotations

from cleanops.repository import ExcelRepository
from cleanops.services import SchedulingService

repo = ExcelRepository()
service = SchedulingService(repo=repo)
