import argparse
import logging
import os

import uvicorn

from simple_request.core.config import Settings
from simple_request.main import create_app


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Simple Request secret core")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host interface to bind")
    parser.add_argument("--port", type=int, default=8333, help="Port to run the backend on")
    parser.add_argument("--dir", type=str, default=None, help="Workspace directory for data")

    args = parser.parse_args()

    settings = Settings.from_env(workspace_dir=args.dir)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log = logging.getLogger("simple_request")
    log.info("starting on http://%s:%d", args.host, args.port)
    log.info("workspace: %s (secret backend: %s)", os.path.abspath(settings.workspace_dir), settings.secret_backend)

    uvicorn.run(
        create_app(settings=settings),
        host=args.host,
        port=args.port,
        reload=False,
    )
