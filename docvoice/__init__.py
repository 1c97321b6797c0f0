"""
DocVoice - talk to a document by voice.

Session management, the voice turn state machine, and the HTTP/WebSocket
service that bridges a speech-capable client to a hosted language model.
"""

from docvoice.shared.version import DOCVOICE_VERSION

__version__ = DOCVOICE_VERSION
