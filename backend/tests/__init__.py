"""
TubeLearn Test Suite

Test Structure:
    tests/
    ├── conftest.py                      # Shared fixtures and fakes
    └── unit/                            # Unit tests (no network, SQLite per test)
        ├── test_orchestrator.py         # Job lifecycle end to end
        ├── test_transcription_client.py # Retry, rate limits, fallback
        ├── test_quota_monitor.py        # Admission and usage ledger
        ├── test_result_cache.py         # Content-addressed cache
        ├── test_notification_queue.py   # Durable outbound queue
        └── test_processing_router.py    # HTTP surface

Running Tests:
    # Run all tests
    pytest backend/tests -v

    # Run with coverage
    pytest backend/tests --cov=tubelearn --cov-report=html
"""
