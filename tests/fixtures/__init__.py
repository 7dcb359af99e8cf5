"""
Pytest fixtures for the CivitaiDownloader test suite.

- http_mocking: path-routed ``httpx.MockTransport`` with request capture
- catalog: builders for catalog JSON payloads (models, versions, files)
"""
