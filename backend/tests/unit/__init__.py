"""
Unit Tests

Unit tests run without external services. PostgreSQL is replaced by a
per-test SQLite file, Redis by in-memory stand-ins, and network-bound
collaborators (yt-dlp, speech-to-text, LLM, SMTP) by fakes.
"""
