import json

import pytest

from harvester import main as cli


@pytest.fixture()
def config_path(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda path: None)
    data_root = tmp_path / "data"
    path = tmp_path / "settings.toml"
    path.write_text(
        "[app]\n"
        f'data_root = "{data_root}"\n'
        f'database = "{data_root / "harvester.db"}"\n'
        f'checkpoint_dir = "{data_root / "checkpoints"}"\n'
        f'metrics_dir = "{data_root / "metrics"}"\n',
        encoding="utf-8",
    )
    return str(path)


def _run(config_path, capsys, *argv):
    cli.main(["--config", config_path, *argv])
    return json.loads(capsys.readouterr().out)


def test_submit_list_and_archive(config_path, capsys):
    job = _run(config_path, capsys, "submit", "cook.test/recipes/")
    assert job["url"] == "https://cook.test/recipes"
    assert job["status"] == "pending"

    again = _run(config_path, capsys, "submit", "https://cook.test/recipes")
    assert again["id"] == job["id"]

    listed = _run(config_path, capsys, "jobs")
    assert [row["id"] for row in listed] == [job["id"]]

    assert _run(config_path, capsys, "archive", str(job["id"])) == {"archived": 1}
    assert _run(config_path, capsys, "jobs") == []
    archived = _run(config_path, capsys, "jobs", "--archived")
    assert archived[0]["log"] == "Archived/Stopped by user"


def test_archive_all(config_path, capsys):
    _run(config_path, capsys, "submit", "https://cook.test/a")
    _run(config_path, capsys, "submit", "https://cook.test/b")
    assert _run(config_path, capsys, "archive", "--all") == {"archived": 2}


def test_archive_requires_exactly_one_target(config_path):
    with pytest.raises(SystemExit):
        cli.main(["--config", config_path, "archive"])
    with pytest.raises(SystemExit):
        cli.main(["--config", config_path, "archive", "3", "--all"])


def test_clear_cache_on_empty_database(config_path, capsys):
    assert _run(config_path, capsys, "clear-cache") == {"removed": 0}
