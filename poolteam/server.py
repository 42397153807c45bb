import logging
import os

import uvicorn

logger = logging.getLogger(__name__)
APP_MODULE = "poolteam.main:app"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def run_options(env=os.environ) -> dict:
    """uvicorn keyword arguments for the league service, read from ``env``."""
    options: dict = {
        "host": env.get("APP_HOST", "0.0.0.0"),
        "port": 8000,
        "log_level": env.get("UVICORN_LOG_LEVEL", "info").lower(),
    }
    raw_port = env.get("APP_PORT") or env.get("PORT")
    if raw_port:
        if raw_port.isdigit():
            options["port"] = int(raw_port)
        else:
            logger.warning("Port %r is not a number, using %d", raw_port, options["port"])

    cert, key = env.get("SSL_CERT_FILE"), env.get("SSL_KEY_FILE")
    if cert and key:
        options.update(ssl_certfile=cert, ssl_keyfile=key)
    elif cert or key:
        logger.warning("SSL_CERT_FILE and SSL_KEY_FILE must be set together; serving plain HTTP")
    return options


def main() -> None:
    options = run_options()
    logging.basicConfig(
        level=getattr(logging, options["log_level"].upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    uvicorn.run(APP_MODULE, **options)


if __name__ == "__main__":
    main()
