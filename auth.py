import hashlib
import secrets
import string

from config import SEED_LENGTH

# NOTE:
# Credentials are a single unsalted SHA-256 pass over the UTF-8 message,
# encoded as lowercase hex. The missing salt is a known weakness of the
# scheme: identical images on two accounts produce the same credential.
# Switching to a salted scheme would invalidate every stored credential.

SEED_ALPHABET = string.ascii_letters + string.digits


def derive_credential(message: str) -> str:
    """
    Hash a fingerprint (or any message) into the stored credential.
    """
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def generate_seed(length: int = SEED_LENGTH) -> str:
    """
    Random printable seed for a generated password image.

    Drawn from the OS CSPRNG. The caller renders the image and then
    drops the seed; it is never stored.
    """
    return "".join(secrets.choice(SEED_ALPHABET) for _ in range(length))
