"""Post-deployment reachability probe."""

from typing import Iterable, Optional

import httpx
import structlog

from hostdeploy.deploy.models import ProbeResult

logger = structlog.get_logger()

DEFAULT_ACCEPTED_CODES = (200, 301, 302)


def probe(
    url: str,
    *,
    accepted_codes: Iterable[int] = DEFAULT_ACCEPTED_CODES,
    timeout: float = 10.0,
    client: Optional[httpx.Client] = None,
) -> ProbeResult:
    """GET ``url`` once without following redirects.

    Certificates are not verified because a fresh host may still be serving a
    self-signed or staging certificate. Never raises.
    """
    accepted = set(accepted_codes)
    owns_client = client is None
    if client is None:
        client = httpx.Client(verify=False, timeout=httpx.Timeout(timeout), follow_redirects=False)
    try:
        resp = client.get(url)
    except httpx.HTTPError as e:
        logger.debug("Probe failed", url=url, error=str(e))
        return ProbeResult(url=url, ok=False, error=str(e))
    finally:
        if owns_client:
            client.close()

    return ProbeResult(url=url, status_code=resp.status_code, ok=resp.status_code in accepted)
