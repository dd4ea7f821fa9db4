import pytest

from banhammer.backend.migrate import main


def test_print_flag_outputs_schema_without_database(capsys, monkeypatch) -> None:
    monkeypatch.delenv("BANHAMMER_DATABASE_URL", raising=False)

    assert main(["--print"]) == 0

    output = capsys.readouterr().out
    assert "CREATE TABLE IF NOT EXISTS bans" in output
    assert "CREATE TABLE IF NOT EXISTS sessions" in output


def test_migration_requires_database_url(monkeypatch) -> None:
    monkeypatch.delenv("BANHAMMER_DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError):
        main([])
