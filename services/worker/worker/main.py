from tenant_rag import get_settings
from tenant_rag.tasks import INGESTION_QUEUE

from worker import celery_app


def main() -> None:
    settings = get_settings()
    celery_app.worker_main(
        [
            "worker",
            "--loglevel=info",
            f"--queues={INGESTION_QUEUE}",
            f"--concurrency={settings.worker_concurrency}",
            "-E",
        ]
    )


if __name__ == "__main__":
    main()
