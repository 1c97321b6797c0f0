"""Canonical version string for the DocVoice service.

Usage:
    from docvoice.shared.version import DOCVOICE_VERSION, DOCVOICE_PROTOCOL
    app = FastAPI(..., version=DOCVOICE_VERSION)
"""

DOCVOICE_VERSION = "0.4.0"
DOCVOICE_PROTOCOL = "v1"  # client bridge protocol, bumped on breaking event changes
