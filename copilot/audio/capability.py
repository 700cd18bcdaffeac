"""One-time probes for the on-device speech engines.

The result is cached for the life of the process so the UI can decide once
whether to show voice affordances.
"""

import functools
from enum import Enum

from loguru import logger


class Capability(str, Enum):
    AVAILABLE = "available"        # Engine present and a device was found
    UNAVAILABLE = "unavailable"    # Engine present, but no usable device right now
    UNSUPPORTED = "unsupported"    # Engine libraries not installed


@functools.lru_cache(maxsize=None)
def recognition_capability() -> Capability:
    """Can this machine run dictation (microphone + Whisper)?"""
    try:
        import pyaudio
        import pywhispercpp  # noqa: F401
    except ImportError as e:
        logger.warning("Speech recognition unsupported: {}", e)
        return Capability.UNSUPPORTED

    pa = pyaudio.PyAudio()
    try:
        inputs = [
            i for i in range(pa.get_device_count())
            if pa.get_device_info_by_index(i).get("maxInputChannels", 0) > 0
        ]
    finally:
        pa.terminate()

    if not inputs:
        logger.warning("Speech recognition unavailable: no input device.")
        return Capability.UNAVAILABLE
    logger.info("Speech recognition available ({} input device(s)).", len(inputs))
    return Capability.AVAILABLE


@functools.lru_cache(maxsize=None)
def synthesis_capability() -> Capability:
    """Can this machine synthesize speech locally (Piper)?"""
    try:
        import piper  # noqa: F401
    except ImportError:
        logger.warning("piper-tts not installed. Local speech synthesis unsupported.")
        return Capability.UNSUPPORTED
    return Capability.AVAILABLE
