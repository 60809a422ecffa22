"""Run ARQ worker. Usage: python -m storefront.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from storefront.core.queue import get_redis_settings
from storefront.worker.tasks import deliver_notification, scan_pending_transactions, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [deliver_notification]
    cron_jobs = [
        cron(scan_pending_transactions, second={0, 30}, run_at_startup=False),  # every 30s
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_tries = 5


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
