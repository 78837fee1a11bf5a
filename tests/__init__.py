"""
Booking Engine Tests

Unit tests run without PostgreSQL, Redis, Google Calendar or Anthropic;
every external collaborator is mocked and "now" is injected.

Running Tests:
    # Run all unit tests
    pytest tests/unit -v

    # Run one area
    pytest tests/unit/test_booking_flow.py -v

    # E2E smoke tests against a running instance
    ENGINE_URL=http://localhost:8000 pytest tests/e2e/smoke_test_e2e.py -v

Test Coverage:
    - Interval arithmetic and slot slicing
    - Busy-block normalization and degraded provider handling
    - Slot search strategies
    - Booking conversation steps
    - Commit protocol and slot lock
    - Repository queries and state store
    - Regex extractors, intent and language
    - HTTP surface
"""
