import logging

from services.normalize.worker import get_config, run_worker_service


def main() -> None:
    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    run_worker_service(enable_listener=True)


if __name__ == "__main__":
    main()
