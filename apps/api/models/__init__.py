"""Models package."""

from .share import Share
from .share_idempotency import ShareIdempotency
from .share_job import ShareJob
from .generation import Generation
from .generation_quota import GenerationDailyQuota
