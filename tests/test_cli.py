import asyncio
import datetime
import json
import os
import sys

import pytest
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
import cli
from models import ExerciseHistoryEntry, SetData
from settings_schema import SettingsSchema

PLANS = [
    {
        "version": "1",
        "name": "Starter",
        "trainings": {
            "A": {
                "Squat": {
                    "numberOfSets": 1,
                    "minimumNumberOfRepeasts": 8,
                    "maximumNumberOfRepeasts": 12,
                    "minimumTimeToRest": 60,
                    "maximumTimeToRest": 90,
                }
            },
            "B": {
                "Row": {
                    "numberOfSets": 2,
                    "minimumNumberOfRepeasts": 10,
                    "maximumNumberOfRepeasts": 12,
                    "minimumTimeToRest": 45,
                    "maximumTimeToRest": 60,
                }
            },
        },
    }
]


@pytest.fixture
def config_path(tmp_path):
    plans = tmp_path / "plans.yaml"
    plans.write_text(yaml.safe_dump(PLANS), encoding="utf-8")
    cfg = tmp_path / "settings.yaml"
    cfg.write_text(
        yaml.safe_dump(
            {
                "db_path": str(tmp_path / "cli.db"),
                "use_server_data": False,
                "local_plans_path": str(plans),
                "log_level": "WARNING",
            }
        ),
        encoding="utf-8",
    )
    return str(cfg)


def _services(config_path):
    with open(config_path, encoding="utf-8") as f:
        return cli.build_services(SettingsSchema(**yaml.safe_load(f)))


def test_sync_and_trainings(config_path, capsys):
    assert cli.main(["--config", config_path, "sync"]) == 0
    out = capsys.readouterr().out
    assert "1\tStarter\tA, B" in out
    assert cli.main(["--config", config_path, "trainings"]) == 0
    out = capsys.readouterr().out
    assert "A: 1 exercises (recommended)" in out
    assert "B: 1 exercises" in out


def test_trainings_without_plan(config_path, capsys):
    assert cli.main(["--config", config_path, "trainings"]) == 1
    assert "run 'sync' first" in capsys.readouterr().out


def test_set_defaults_and_history(config_path, capsys):
    assert cli.main(
        ["--config", config_path, "set-defaults", "Squat", "--weight", "60", "--repeats", "8"]
    ) == 0
    assert '"weight": 60.0' in capsys.readouterr().out
    assert cli.main(["--config", config_path, "history", "Squat"]) == 0
    assert "No history for Squat" in capsys.readouterr().out
    assert cli.main(["--config", config_path, "clear-history"]) == 0
    assert _services(config_path).defaults.fetch("Squat").is_empty()


def test_user_id(config_path, capsys):
    cli.main(["--config", config_path, "user-id"])
    first = capsys.readouterr().out.strip()
    cli.main(["--config", config_path, "user-id"])
    assert capsys.readouterr().out.strip() == first
    assert first.startswith("user_")


def test_run_unknown_training(config_path, capsys):
    services = _services(config_path)
    result = asyncio.run(cli.run_session(services, "Z", ask=lambda prompt: ""))
    assert result == 1
    assert "choose from A, B" in capsys.readouterr().out


def test_interactive_run(config_path, capsys):
    services = _services(config_path)
    answers = iter(["50", "", "", "s", "d"])

    result = asyncio.run(cli.run_session(services, "A", ask=lambda prompt: next(answers)))

    assert result == 0
    assert "Training complete" in capsys.readouterr().out
    history = services.history.fetch_history("Squat")
    assert len(history) == 1
    assert history[0].weight == 50.0
    assert history[0].repeats == 10
    assert services.completions.counts() == {"A": 1}
    assert services.backup.fetch_all_records()[0]["exerciseName"] == "Squat"

    cli.main(["--config", config_path, "volume", "Squat"])
    assert '"volume_load": 500' in capsys.readouterr().out


def _record_today(services, name="Squat"):
    services.history.append(
        name,
        ExerciseHistoryEntry(
            date=datetime.datetime.now().astimezone().isoformat(),
            weight=50.0,
            repeats=10,
            restTime=75,
            completedSets=1,
            totalSets=1,
            setsData=[SetData(weight=50.0, repeats=10)],
        ),
    )


def test_custom_title_shown_in_history(config_path, capsys):
    _record_today(_services(config_path))
    assert cli.main(
        ["--config", config_path, "set-custom", "Squat", "--title", "Back squat", "--note", "below parallel"]
    ) == 0
    assert "Back squat: below parallel" in capsys.readouterr().out
    cli.main(["--config", config_path, "history", "Squat"])
    out = capsys.readouterr().out
    assert out.splitlines()[0] == "Back squat"
    assert "50.0x10" in out
    cli.main(["--config", config_path, "history"])
    assert "Back squat\t1 entries" in capsys.readouterr().out


def test_edit_sets_rewrites_todays_entry(config_path, capsys):
    services = _services(config_path)
    assert cli.main(["--config", config_path, "edit-sets", "Squat", "55x8"]) == 1
    assert "No entry for Squat recorded today" in capsys.readouterr().out

    _record_today(services)
    assert cli.main(["--config", config_path, "edit-sets", "Squat", "55x8", "0x12"]) == 0
    entry = services.history.fetch_history("Squat")[0]
    assert (entry.weight, entry.repeats) == (55.0, 8)
    assert entry.sets_data[1].weight is None
    assert entry.sets_data[1].repeats == 12

    capsys.readouterr()
    assert cli.main(["--config", config_path, "edit-sets", "Squat", "55"]) == 1
    assert "WEIGHTxREPS" in capsys.readouterr().out


def test_history_without_records(config_path, capsys):
    assert cli.main(["--config", config_path, "history"]) == 0
    assert "No history recorded" in capsys.readouterr().out


def test_backups_listing(config_path, capsys):
    _services(config_path).backup.add({"exerciseName": "Row"}, fallback=True)
    assert cli.main(["--config", config_path, "backups"]) == 0
    record = json.loads(capsys.readouterr().out.strip())
    assert record["exerciseName"] == "Row"
    assert record["fallback"] is True


def test_run_shows_custom_note(config_path, capsys):
    services = _services(config_path)
    services.defaults.save("Row", weight=30.0)
    services.custom.save("Row", custom_note="keep the back flat")
    result = asyncio.run(cli.run_session(services, "B", ask=lambda prompt: "q"))
    assert result == 0
    assert "note: keep the back flat" in capsys.readouterr().out
