import logging
from dataclasses import dataclass

from air_quality_station.domain.errors import ChecksumMismatch, FrameTooShort, InvalidHeader

logger = logging.getLogger(__name__)

# Deployed readings were produced with a 255 high-byte multiplier; keep it for parity.
PM_HIGH_BYTE_MULTIPLIER = 255


@dataclass(frozen=True)
class SDS011Protocol:
    """Layout of the SDS011 measurement frame.

    Only the first ``frame_length`` bytes of a buffer are consulted; the
    trailing 0xAB tail byte and anything after it are ignored.

    Attributes:
        header: The two bytes every measurement frame starts with.
        frame_length: Number of leading bytes a buffer must provide.
        checksum_start_offset: First byte covered by the checksum.
        checksum_offset: Offset of the checksum byte; bytes before it are summed.
        pm25_offset: Offset of the little-endian PM2.5 value (low byte first).
        pm10_offset: Offset of the little-endian PM10 value (low byte first).
        scale: Divisor turning the raw value into μg/m³.
    """

    header: bytes = b"\xaa\xc0"
    frame_length: int = 9
    checksum_start_offset: int = 2
    checksum_offset: int = 8
    pm25_offset: int = 2
    pm10_offset: int = 4
    scale: float = 10.0


DEFAULT_PROTOCOL = SDS011Protocol()


@dataclass(frozen=True)
class SDS011Reading:
    """PM concentrations decoded from one frame, before the store assigns id and time."""

    pm25: float
    pm10: float


def checksum(frame: bytes, protocol: SDS011Protocol = DEFAULT_PROTOCOL) -> int:
    return sum(frame[protocol.checksum_start_offset : protocol.checksum_offset]) & 0xFF


def _value(frame: bytes, offset: int, protocol: SDS011Protocol) -> float:
    low, high = frame[offset], frame[offset + 1]
    return (high * PM_HIGH_BYTE_MULTIPLIER + low) / protocol.scale


def decode(buffer: bytes, protocol: SDS011Protocol = DEFAULT_PROTOCOL) -> SDS011Reading:
    """Validate and decode the frame at the head of *buffer*.

    Args:
        buffer: Raw bytes read from the device. Longer buffers are accepted,
            only the first ``protocol.frame_length`` bytes are used.
        protocol: Frame layout constants.

    Returns:
        The decoded PM2.5 and PM10 concentrations.

    Raises:
        FrameTooShort: If fewer than ``protocol.frame_length`` bytes are available.
        InvalidHeader: If the first two bytes are not the frame header.
        ChecksumMismatch: If the checksum byte does not match the payload.
    """
    if len(buffer) < protocol.frame_length:
        raise FrameTooShort(len(buffer), protocol.frame_length)

    frame = bytes(buffer[: protocol.frame_length])
    observed = frame[: len(protocol.header)]
    if observed != protocol.header:
        raise InvalidHeader(observed)

    computed = checksum(frame, protocol)
    expected = frame[protocol.checksum_offset]
    if computed != expected:
        raise ChecksumMismatch(computed, expected)

    reading = SDS011Reading(
        pm25=_value(frame, protocol.pm25_offset, protocol),
        pm10=_value(frame, protocol.pm10_offset, protocol),
    )
    logger.debug("Decoded frame %s: %s", frame.hex(), reading)
    return reading


def encode_frame(pm25_raw: int, pm10_raw: int, protocol: SDS011Protocol = DEFAULT_PROTOCOL) -> bytes:
    """Build a valid 10-byte SDS011 frame from raw 16-bit values.

    The raw values are split with the same multiplier ``decode`` uses, so
    ``decode(encode_frame(r25, r10))`` yields ``r25 / 10`` and ``r10 / 10`` for
    raw values up to ``255 * 255 + 254``.
    """
    body = bytearray(6)
    for offset, raw in ((protocol.pm25_offset, pm25_raw), (protocol.pm10_offset, pm10_raw)):
        high, low = divmod(raw, PM_HIGH_BYTE_MULTIPLIER)
        if high > 0xFF:
            raise ValueError(f"raw value {raw} does not fit in a frame")
        body[offset - 2] = low
        body[offset - 1] = high
    frame = protocol.header + bytes(body)
    return frame + bytes([checksum(frame, protocol), 0xAB])
