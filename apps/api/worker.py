"""RQ worker process entrypoint for queued dispatch jobs."""

from redis import Redis
from rq import Worker

from config import settings
from services.dispatcher import DISPATCH_QUEUE_NAME


def main():
    redis_conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker([DISPATCH_QUEUE_NAME], connection=redis_conn)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
