import pytest


@pytest.fixture(autouse=True)
def digest_env(tmp_path, monkeypatch):
    """Keep error reports out of the source tree and pin link hosts."""
    monkeypatch.setenv("DIGEST_ERROR_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("FRONTEND_BASE_URL", "https://test.example.com")
    monkeypatch.setenv("BACKEND_BASE_URL", "https://api.test.example.com")
