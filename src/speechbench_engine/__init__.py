"""SpeechBench Engine - TTS/ASR provider benchmarking backend."""

__version__ = "1.0.0"
