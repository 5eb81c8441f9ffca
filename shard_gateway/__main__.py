import asyncio

from .logging_config import log
from .main import main


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Server stopped by user")


if __name__ == "__main__":
    run()
