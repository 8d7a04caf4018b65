import os

import uvicorn

from statement_auditor.core import settings
from statement_auditor.logger import get_logging_config


def main() -> None:
    uvicorn.run(
        "statement_auditor.app:app",
        host=os.getenv("HOST") or "0.0.0.0",
        port=settings.get_env_int("PORT", 8000, min_value=1),
        log_config=get_logging_config(),
    )


if __name__ == "__main__":
    main()
