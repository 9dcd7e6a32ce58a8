"""RQ worker process entrypoint for share job delivery."""

from rq import Worker

from config import settings
from logging_config import setup_logging
from services.task_dispatch import get_redis_connection


def main():
    setup_logging()
    redis_conn = get_redis_connection()
    worker = Worker([settings.JOBS_QUEUE_NAME], connection=redis_conn)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
