"""Application-wide constants."""

from __future__ import annotations

# QR Image Rendering Defaults
DEFAULT_QR_SIZE = 640
DEFAULT_QR_BOX_SIZE = 10
DEFAULT_QR_BORDER = 4  # Quiet zone, in modules
DEFAULT_QR_FILL_COLOR = "#111827"
DEFAULT_QR_BACKGROUND_COLOR = "white"
DEFAULT_EC_LEVEL = "M"
CENTER_IMAGE_SIZE = 100  # Optimal size for center image in QR codes

# Symbol Versions
MIN_VERSION = 1
MAX_VERSION = 40

# Security Options
SECURITY_OPTIONS = ("WPA/WPA2/WPA3", "WEP", "None")

# Security Label Normalization
SECURITY_ALIASES = {
    "WPA/WPA2/WPA3": "WPA",
    "WPA2": "WPA",
    "WPA3": "WPA",
    "WPA/WPA2": "WPA",
    "SAE": "WPA",
    "NOPASS": "OPEN",
    "NONE": "OPEN",
    "NO PASSWORD": "OPEN",
    "": "OPEN",
}

# Download Naming
DOWNLOAD_FALLBACK_NAME = "network"

# Scanning
DEFAULT_SCAN_INTERVAL = 0.5  # Seconds between captured frames

# Binarizer
BINARIZER_BLOCK_SIZE = 8
BINARIZER_MIN_DYNAMIC_RANGE = 24
BINARIZER_NEIGHBORHOOD = 2  # Blocks on each side averaged into a threshold

# Finder Pattern Search
FINDER_MAX_CANDIDATES = 10
FINDER_MODULE_SIZE_TOLERANCE = 0.4
FORMAT_MAX_BIT_ERRORS = 3
VERSION_MAX_BIT_ERRORS = 3
