import os
from pathlib import Path

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent

# SQLite database location (the account store)
DATABASE_URL = os.getenv(
    "IMAGE_PASSWORD_DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'data' / 'passwords.db'}",
)

LOG_LEVEL = os.getenv("IMAGE_PASSWORD_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Side length of the normalized grid. The fingerprint has GRID_SIZE**2 bits.
GRID_SIZE = 8

# Resampling and grayscale conversion used by the normalizer.
# Changing either one changes every fingerprint already stored.
RESIZE_INTERPOLATION = "INTER_AREA"
GRAYSCALE_CONVERSION = "COLOR_RGB2GRAY"

# Canvas for system-generated password images
CANVAS_WIDTH = 256
CANVAS_HEIGHT = 256

# Length of the random printable seed behind a generated image
SEED_LENGTH = 32

# Uploads above this size are rejected before decoding
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
