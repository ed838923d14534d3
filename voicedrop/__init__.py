"""
VoiceDrop - voice dictation with AI text enhancement.

Records audio, transcribes it with Whisper, optionally enhances the text
with an LLM provider and delivers the result to the cursor and clipboard.
"""

__version__ = "0.1.0"
__description__ = "Voice dictation with Whisper transcription and AI text enhancement"
