# backend/medstock/serve.py
"""
Run the API under uvicorn with settings taken from the environment.

HOST, PORT, RELOAD, WEB_CONCURRENCY, LOG_LEVEL and FORWARDED_ALLOW_IPS configure
the server; LOG_LEVEL also sets the level of the medstock loggers.

SSL_CERTFILE, SSL_KEYFILE, SSL_CA_CERTS and SSL_KEYFILE_PASSWORD enable TLS.
"""

import logging
import os
from typing import Dict, Optional

import uvicorn


def _ssl_options() -> Dict[str, Optional[str]]:
    """Collect uvicorn TLS options; empty when no SSL_* variable is set."""
    certfile = os.getenv("SSL_CERTFILE")
    keyfile = os.getenv("SSL_KEYFILE")
    ca_certs = os.getenv("SSL_CA_CERTS")
    keyfile_password = os.getenv("SSL_KEYFILE_PASSWORD")

    if not any([certfile, keyfile, ca_certs, keyfile_password]):
        return {}

    options: Dict[str, Optional[str]] = {}
    if certfile:
        options["ssl_certfile"] = certfile
    if keyfile:
        options["ssl_keyfile"] = keyfile
    if ca_certs:
        options["ssl_ca_certs"] = ca_certs
    if keyfile_password:
        options["ssl_keyfile_password"] = keyfile_password
    return options


_TRUTHY = {"1", "true", "yes", "on"}


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload_enabled = os.getenv("RELOAD", "false").lower() in _TRUTHY
    log_level = os.getenv("LOG_LEVEL", "info")
    forwarded_allow_ips = os.getenv("FORWARDED_ALLOW_IPS", "*")
    # Transfers are sync endpoints; each worker runs them on its own threadpool.
    workers = 1 if reload_enabled else int(os.getenv("WEB_CONCURRENCY", "1"))

    logging.basicConfig(level=log_level.upper())

    uvicorn.run(
        "medstock.main:app",
        host=host,
        port=port,
        reload=reload_enabled,
        workers=workers,
        log_level=log_level,
        proxy_headers=True,
        forwarded_allow_ips=forwarded_allow_ips,
        **_ssl_options(),
    )


if __name__ == "__main__":
    main()
