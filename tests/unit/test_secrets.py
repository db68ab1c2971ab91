import pytest

from ai_responder.registry.supabase_connector import SupabaseConfig, SupabaseConfigError
from ai_responder.secrets import SecretNotFoundError, find_secret, get_secret, missing_secrets


def test_env_wins_over_files(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("TEST_SECRET_A=from-dotenv\n", encoding="utf-8")
    (tmp_path / "TEST_SECRET_A").write_text("from-file\n", encoding="utf-8")
    monkeypatch.setenv("TEST_SECRET_A", "from-env")
    assert find_secret("TEST_SECRET_A", secrets_dir=tmp_path) == ("from-env", "env")


def test_dotenv_then_mounted_file(tmp_path, monkeypatch):
    monkeypatch.delenv("TEST_SECRET_B", raising=False)
    monkeypatch.delenv("TEST_SECRET_C", raising=False)
    (tmp_path / ".env").write_text("TEST_SECRET_B=from-dotenv\n", encoding="utf-8")
    (tmp_path / "TEST_SECRET_C").write_text("  from-file\n", encoding="utf-8")
    assert find_secret("TEST_SECRET_B", secrets_dir=tmp_path) == ("from-dotenv", "dotenv")
    assert find_secret("TEST_SECRET_C", secrets_dir=tmp_path) == ("from-file", "file")


def test_required_secret_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("TEST_SECRET_D", raising=False)
    assert get_secret("TEST_SECRET_D", secrets_dir=tmp_path) is None
    with pytest.raises(SecretNotFoundError):
        get_secret("TEST_SECRET_D", required=True, secrets_dir=tmp_path)
    assert missing_secrets(("TEST_SECRET_D",), secrets_dir=tmp_path) == ["TEST_SECRET_D"]


def test_supabase_config_prefers_service_role(monkeypatch, tmp_path):
    monkeypatch.setenv("AI_RESPONDER_SECRETS_DIR", str(tmp_path))
    monkeypatch.setenv("SUPABASE_URL", "https://x.supabase.co/")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service")
    monkeypatch.setenv("SUPABASE_KEY", "anon")
    assert SupabaseConfig.from_env() == SupabaseConfig(url="https://x.supabase.co", key="service")

    monkeypatch.delenv("SUPABASE_URL")
    with pytest.raises(SupabaseConfigError):
        SupabaseConfig.from_env()
