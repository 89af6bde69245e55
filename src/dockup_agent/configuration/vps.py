"""Host identity used to tag telemetry events"""

import asyncio
import logging
import socket
import subprocess
from pathlib import Path
from typing import Optional

import aiohttp

from ..constants import HostIdentity

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


def read_os_name(os_release_path: str = HostIdentity.OS_RELEASE_PATH) -> str:
    """Return the distribution ``ID`` from os-release, falling back to ``uname -s``."""
    try:
        text = Path(os_release_path).read_text(encoding="utf-8")
    except OSError:
        try:
            result = subprocess.run(["uname", "-s"], capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.TimeoutExpired):
            return UNKNOWN
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip().lower()
        return UNKNOWN

    for line in text.splitlines():
        if line.startswith("ID="):
            return line[len("ID="):].strip().strip('"').lower()
    return UNKNOWN


def read_ram_gb(meminfo_path: str = HostIdentity.MEMINFO_PATH) -> str:
    """Return total memory in whole GiB, rounded up."""
    try:
        text = Path(meminfo_path).read_text(encoding="utf-8")
    except OSError:
        return UNKNOWN

    for line in text.splitlines():
        if line.startswith("MemTotal:"):
            fields = line.split()
            if len(fields) >= 2 and fields[1].isdigit():
                ram_kb = int(fields[1])
                if ram_kb > 0:
                    kb_per_gb = 1024 * 1024
                    return str((ram_kb + kb_per_gb - 1) // kb_per_gb)
            break
    return UNKNOWN


def location_from_hostname(hostname: str) -> str:
    """Guess a datacenter tag such as ``fsn1`` from the hostname."""
    hostname = hostname.lower()
    if any(hint in hostname for hint in HostIdentity.HOSTNAME_LOCATION_HINTS):
        return hostname[:4]
    return "vps"


async def probe_metadata_location(
    session: aiohttp.ClientSession,
    urls: tuple = HostIdentity.METADATA_URLS,
    timeout: float = HostIdentity.METADATA_TIMEOUT_SECONDS,
) -> Optional[str]:
    """Ask the cloud metadata services for a region, first answer wins."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    for url in urls:
        try:
            async with session.get(url, timeout=client_timeout) as response:
                if response.status != 200:
                    continue
                body = (await response.text()).strip().lower()
                if body:
                    return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Metadata probe {url} failed: {e}")
    return None


async def generate_vps_id(
    os_release_path: str = HostIdentity.OS_RELEASE_PATH,
    meminfo_path: str = HostIdentity.MEMINFO_PATH,
    session: Optional[aiohttp.ClientSession] = None,
) -> str:
    """Build a ``<os>-<ram>gb-<location>`` identifier for this host."""
    os_name = read_os_name(os_release_path)
    ram_gb = read_ram_gb(meminfo_path)

    if session is None:
        async with aiohttp.ClientSession() as owned_session:
            location = await probe_metadata_location(owned_session)
    else:
        location = await probe_metadata_location(session)

    if not location:
        location = location_from_hostname(socket.gethostname())

    return f"{os_name}-{ram_gb}gb-{location}"
