"""Services for SpeechBench Engine."""
