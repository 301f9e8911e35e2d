"""TLS versions and root certificates for the download client."""

from __future__ import annotations

import base64
import binascii
import re
import ssl
from dataclasses import dataclass
from enum import IntEnum

_PEM_BLOCK = re.compile(
    rb"-----BEGIN CERTIFICATE-----(.*?)-----END CERTIFICATE-----", re.DOTALL
)


class TLSVersion(IntEnum):
    """Minimum TLS version; later versions compare greater."""

    TLS_1_2 = 0
    TLS_1_3 = 1

    def to_ssl(self) -> ssl.TLSVersion:
        if self is TLSVersion.TLS_1_2:
            return ssl.TLSVersion.TLSv1_2
        return ssl.TLSVersion.TLSv1_3


def _check_der(der: bytes) -> None:
    if len(der) < 2 or der[0] != 0x30:
        raise ValueError("not a DER encoded certificate: expected an ASN.1 sequence")
    first = der[1]
    if first < 0x80:
        header, length = 2, first
    else:
        count = first & 0x7F
        if count == 0 or count > 4 or len(der) < 2 + count:
            raise ValueError("not a DER encoded certificate: bad length encoding")
        header = 2 + count
        length = int.from_bytes(der[2:header], "big")
    if header + length != len(der):
        raise ValueError("not a DER encoded certificate: length does not match data")


@dataclass(frozen=True)
class Certificate:
    """A root certificate, held in DER form."""

    der: bytes

    @classmethod
    def from_der(cls, der: bytes) -> Certificate:
        """Create a certificate from binary DER data."""
        der = bytes(der)
        _check_der(der)
        return cls(der)

    @classmethod
    def from_pem(cls, pem: bytes | str) -> Certificate:
        """Create a certificate from the first PEM block in `pem`."""
        if isinstance(pem, str):
            pem = pem.encode("ascii", errors="replace")
        match = _PEM_BLOCK.search(pem)
        if match is None:
            raise ValueError("no PEM certificate block found")
        try:
            der = base64.b64decode(b"".join(match.group(1).split()), validate=True)
        except binascii.Error as err:
            raise ValueError(f"invalid base64 in PEM certificate: {err}") from None
        return cls.from_der(der)

    @property
    def pem(self) -> str:
        return ssl.DER_cert_to_PEM_cert(self.der)

    def add_to(self, context: ssl.SSLContext) -> None:
        """Trust this certificate as a root in `context`."""
        context.load_verify_locations(cadata=self.der)