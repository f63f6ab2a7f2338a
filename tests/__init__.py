"""
Tests Package - Unit and Integration Tests

- SQLite databases are created per test under tmp_path
- The feed API is stubbed with httpx.MockTransport (see conftest.ScriptedFeed)
- Backoff and pacing waits are recorded instead of slept (conftest.RecordingLifecycle)
"""
