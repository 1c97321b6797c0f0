"""DocVoice test suite."""
