"""
Registration and verification of image passwords.

An account's stored password is one of two shapes, depending on where its
image came from:

* uploaded:  sha256(fingerprint of the user's image)
* generated: the fingerprint of the system-rendered image, unhashed

The two are kept as separate types so a stored value can only ever be
checked with the formula that produced it.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from auth import derive_credential, generate_seed
from errors import DecodeError, DimensionError, ImageDecodeError, UnknownProvenanceError
from generator import generate_synthetic_image
from image_utils import normalize_and_hash

logger = logging.getLogger(__name__)


class Provenance(str, enum.Enum):
    UPLOADED = "uploaded"
    GENERATED = "generated"


@dataclass(frozen=True)
class UploadedCredential:
    """Password of an account registered with a user-supplied image."""

    credential: str

    provenance = Provenance.UPLOADED

    @property
    def stored_value(self) -> str:
        return self.credential


@dataclass(frozen=True)
class GeneratedCredential:
    """Password of an account registered with a system-generated image."""

    fingerprint: str

    provenance = Provenance.GENERATED

    @property
    def stored_value(self) -> str:
        return self.fingerprint


StoredCredential = Union[UploadedCredential, GeneratedCredential]


def from_stored(credential: str, provenance: str) -> StoredCredential:
    """
    Rebuild the credential variant from the persisted string and tag.
    """
    try:
        tag = Provenance(provenance)
    except ValueError as exc:
        raise UnknownProvenanceError(f"Unknown provenance: {provenance!r}") from exc

    if tag is Provenance.UPLOADED:
        return UploadedCredential(credential=credential)
    return GeneratedCredential(fingerprint=credential)


def register_uploaded(image_bytes: bytes) -> UploadedCredential:
    """
    Credential for a user-supplied image.

    Raises DecodeError or DimensionError before anything can be stored.
    """
    fingerprint = normalize_and_hash(image_bytes)
    return UploadedCredential(credential=derive_credential(fingerprint))


def register_generated(seed: Optional[str] = None) -> Tuple[GeneratedCredential, bytes]:
    """
    Render a fresh password image and fingerprint it.

    Returns the credential to store and the PNG to hand to the user. The
    seed is not returned; once this function exits it is gone.
    """
    if seed is None:
        seed = generate_seed()
    png_bytes = generate_synthetic_image(seed)
    fingerprint = normalize_and_hash(png_bytes)
    return GeneratedCredential(fingerprint=fingerprint), png_bytes


def verify(stored: StoredCredential, image_bytes: bytes) -> bool:
    """
    Check a freshly supplied image against an account's stored password.

    Comparison is plain string equality. An image that cannot be decoded
    raises ImageDecodeError rather than returning False.
    """
    try:
        fingerprint = normalize_and_hash(image_bytes)
    except (DecodeError, DimensionError) as exc:
        logger.warning("Verification image could not be normalized: %s", exc)
        raise ImageDecodeError(f"Verification failed: {exc}") from exc

    if isinstance(stored, UploadedCredential):
        candidate = derive_credential(fingerprint)
        is_match = candidate == stored.credential
    elif isinstance(stored, GeneratedCredential):
        candidate = fingerprint
        is_match = candidate == stored.fingerprint
    else:
        raise TypeError(f"Unsupported credential type: {type(stored).__name__}")

    logger.debug(
        "Verification (%s): candidate %s... stored %s... match=%s",
        stored.provenance.value,
        candidate[:10],
        stored.stored_value[:10],
        is_match,
    )
    return is_match


def verify_stored(credential: str, provenance: str, image_bytes: bytes) -> bool:
    """verify() for callers holding the raw stored string and tag."""
    return verify(from_stored(credential, provenance), image_bytes)
