"""
streamscribe - Streaming speech-to-text pipeline

This package turns a live microphone stream or a pre-recorded audio file into
ordered text through pluggable transcription backends, with voice activity
gating, progressive chunking and resilient network dispatch.

Modules:
    audio: Capture, resampling, VAD gating, chunking and encoding
    transcription: Remote and local backends, retry policy, model cache, dispatcher
    config: JSON configuration and credentials
    session: Session controller tying capture to transcription
"""

__version__ = "0.1.0"
__author__ = "streamscribe Team"
