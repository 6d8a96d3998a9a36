"""Coarse audio "energy" from raw bytes.

This is not spectral analysis. The downloaded file is treated as unsigned 8-bit samples
regardless of its actual encoding, so for compressed formats the numbers describe the byte
stream rather than the sound. Callers rely on the output staying stable, so keep it that way.
"""
import asyncio
import logging
from typing import Dict, Optional, Union
from urllib.parse import urlparse

import httpx
import numpy as np

logger = logging.getLogger(__name__)

BANDS = 32
ASSUMED_SAMPLE_RATE = 44100
MAX_DOWNLOAD_BYTES = 50 * 1024 * 1024


class AudioFetchError(Exception):
    pass


def is_valid_audio_url(u: Optional[str]) -> bool:
    """Absolute http(s) URL with a host."""
    if not u:
        return False
    try:
        parsed = urlparse(u.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def estimate_band_energy(buffer: bytes, bands: int = BANDS,
                         sample_rate: int = ASSUMED_SAMPLE_RATE) -> Dict[str, Union[list, int, float]]:
    """
    Split the buffer into ``bands`` contiguous slices of ``len // bands`` bytes (the last slice
    runs to the end of the buffer) and average ``|(b - 128) / 128|`` over each slice.
    The result is scaled so the loudest slice is 1.0; an all-silent or empty buffer gives zeros.
    """
    data = np.frombuffer(bytes(buffer), dtype=np.uint8)
    samples = np.abs((data.astype(np.float64) - 128.0) / 128.0)
    width = len(data) // bands

    energies = np.zeros(bands, dtype=np.float64)
    for band in range(bands):
        start = band * width
        end = len(data) if band == bands - 1 else start + width
        if end > start:
            energies[band] = samples[start:end].mean()

    peak = energies.max()
    if peak > 0:
        energies = energies / peak
    return {
        "frequencies": [float(v) for v in energies],
        "sampleRate": sample_rate,
        "duration": len(data) / sample_rate,
    }


async def _read_body(client: httpx.AsyncClient, url: str, max_bytes: int) -> bytes:
    chunks = []
    total = 0
    async with client.stream("GET", url, follow_redirects=True) as r:
        if not r.is_success:
            raise AudioFetchError(f"Audio fetch failed with status {r.status_code}")
        async for chunk in r.aiter_bytes():
            total += len(chunk)
            if total > max_bytes:
                raise AudioFetchError(f"Remote file exceeds size limit ({max_bytes} bytes).")
            chunks.append(chunk)
    return b"".join(chunks)


async def download_audio(client: httpx.AsyncClient, url: str, timeout: float = 5.0,
                         max_bytes: int = MAX_DOWNLOAD_BYTES) -> bytes:
    """Download the whole file, aborting once ``timeout`` seconds have passed."""
    try:
        return await asyncio.wait_for(_read_body(client, url, max_bytes), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise AudioFetchError(f"Audio fetch timed out after {timeout}s") from e
    except httpx.HTTPError as e:
        raise AudioFetchError(f"Audio fetch failed: {e}") from e
