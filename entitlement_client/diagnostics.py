import platform
from typing import Any, Dict, Mapping
from urllib.parse import urlsplit

import psutil

from entitlement_client import __version__

# Checked in order, the first non-empty one wins
HOST_HEADERS = ("x-forwarded-host", "host", "server-name")


def detect_host(headers: Mapping[str, str]) -> str:
    """
    Work out the domain this install is served from.
    The value must match the domain registered with the seller.
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    for header in HOST_HEADERS:
        raw = (lowered.get(header) or "").strip()
        if not raw:
            continue
        # X-Forwarded-Host may carry a proxy chain
        raw = raw.split(",")[0].strip()
        if "://" not in raw:
            raw = "http://" + raw
        host = urlsplit(raw).hostname or ""
        if host:
            return host.strip()
    return ""


def get_system_info() -> Dict[str, Any]:
    """
    Collect system information sent along with each check for diagnostics.
    """
    return {
        "osPlatform": platform.system(),
        "osRelease": platform.release(),
        "architecture": platform.machine(),
        "cpuCount": psutil.cpu_count(logical=True),
        "totalMemoryGb": round(psutil.virtual_memory().total / (1024**3), 2),
    }


def build_fingerprint(
    domain: str,
    product_version: str,
    host_platform_version: str = "",
) -> Dict[str, Any]:
    """
    Build the request payload describing this install.
    """
    payload = {
        "domain": domain,
        "authLibVersion": __version__,
        "productVersion": product_version,
        "hostPlatformVersion": host_platform_version,
        "runtimeVersion": platform.python_version(),
    }
    payload.update(get_system_info())
    return payload
