"""Concrete platform speech backends (sounddevice, webrtcvad, faster-whisper, Piper)."""
