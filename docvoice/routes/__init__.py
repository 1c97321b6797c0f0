"""DocVoice routes: WebSocket handler for the client bridge."""
