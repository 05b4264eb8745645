"""Run the deployment console backend.

Usage:
    python -m deploy_console [--host HOST] [--port PORT] [--env-file FILE]

Settings not given on the command line come from the environment (and an
optional .env file); see ``deploy_console.config``.
"""

import argparse
import asyncio
import dataclasses
import logging
from pathlib import Path

import uvicorn

from deploy_console.config import Config
from deploy_console.server import create_app

log = logging.getLogger(__name__)


async def _run(config: Config) -> None:
    app = create_app(config)

    # The app lifespan stops every child process group on shutdown
    uvi = uvicorn.Server(
        uvicorn.Config(app, host=config.host, port=config.port, log_level="info"),
    )
    await uvi.serve()


def main() -> None:
    parser = argparse.ArgumentParser(description="Deployment console backend")
    parser.add_argument("--host", help="Interface to bind (default: from env or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to listen on (default: from env or 3001)")
    parser.add_argument("--env-file", type=Path, help="Optional .env file to load")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    config = Config.from_env(args.env_file)
    overrides = {k: v for k, v in (("host", args.host), ("port", args.port)) if v is not None}
    if overrides:
        config = dataclasses.replace(config, **overrides)

    log.info("Starting deployment console on http://%s:%d", config.host, config.port)
    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
