"""
DocVoice App - adapters and services around the turn controller

Capture/playback contracts and the client bridge that implements them,
the Gemini reply client, document ingestion, session management and turn
telemetry. Modules are imported directly (``docvoice.app.session_manager``
and so on); nothing is re-exported here.
"""
