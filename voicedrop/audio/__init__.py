"""Audio capture, decoding and transcription engine access."""
