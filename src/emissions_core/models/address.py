"""Participant addresses — typed bech32 identities for reputers and workers.

Scores, stakes and coefficients are keyed by ``Address`` rather than by raw
strings, so two spellings of the same account (e.g. upper/lower case)
always resolve to the same participant.
"""

from __future__ import annotations

from dataclasses import dataclass

from bech32 import bech32_decode, bech32_encode, convertbits

from emissions_core.errors import IdentityError

DEFAULT_PREFIX = "allo"

_MAX_PAYLOAD_BYTES = 255


@dataclass(frozen=True, order=True)
class Address:
    """A participant account: human-readable prefix plus raw payload bytes."""

    prefix: str
    payload: bytes

    @classmethod
    def from_bytes(cls, payload: bytes, prefix: str = DEFAULT_PREFIX) -> Address:
        """Build an address from raw account bytes (typically 20)."""
        if not 1 <= len(payload) <= _MAX_PAYLOAD_BYTES:
            raise IdentityError(f"address payload must be 1..{_MAX_PAYLOAD_BYTES} bytes")
        if not prefix or prefix.lower() != prefix:
            raise IdentityError(f"invalid address prefix {prefix!r}")
        return cls(prefix=prefix, payload=bytes(payload))

    @classmethod
    def parse(cls, text: str, prefix: str | None = DEFAULT_PREFIX) -> Address:
        """Decode and checksum-verify a bech32 address.

        Args:
            text: Encoded address, e.g. ``allo1...``.
            prefix: Required human-readable part. None accepts any prefix.

        Raises:
            IdentityError: If the address is malformed, fails its checksum,
                or carries the wrong prefix.
        """
        if not isinstance(text, str) or not text:
            raise IdentityError("address must be a non-empty string")

        # (None, None) covers mixed case, bad characters, bad length and checksum
        hrp, data = bech32_decode(text)
        if hrp is None or data is None:
            raise IdentityError(f"malformed bech32 address {text!r}")
        if prefix is not None and hrp != prefix:
            raise IdentityError(f"expected prefix {prefix!r}, got {hrp!r}")

        payload = convertbits(data, 5, 8, False)
        if payload is None or not 1 <= len(payload) <= _MAX_PAYLOAD_BYTES:
            raise IdentityError(f"invalid payload length in {text!r}")
        return cls(prefix=hrp, payload=bytes(payload))

    def __str__(self) -> str:
        return bech32_encode(self.prefix, convertbits(self.payload, 8, 5))
