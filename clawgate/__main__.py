#!/usr/bin/env python3
"""Run the wrapper: python -m clawgate"""

import uvicorn

from clawgate.app import create_app
from clawgate.config import WrapperConfig


def main():
    config = WrapperConfig.from_env()
    # uvicorn turns SIGTERM into a lifespan shutdown, which stops the gateway.
    uvicorn.run(create_app(config), host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
