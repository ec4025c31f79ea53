"""Tests for the screenflow command line."""

import json

import pytest

from screenflow import __version__
from screenflow.cli import build_parser, main


def write(path, data):
    path.write_text(json.dumps(data) if path.suffix == ".json" else data)
    return str(path)


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(["--version"])
    assert exc.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_bind_prints_view_model(tmp_path, capsys):
    schema = write(
        tmp_path / "screen.yaml",
        "name: greet\nfields:\n  - key: hello\n    label: 'Hello {{form.name}}'\n"
        "  - key: adult\n    visible: \"ageGroup == 'adult'\"\n",
    )
    context = write(tmp_path / "ctx.json", {"formData": {"name": "Asha", "ageGroup": "child"}})

    assert main(["bind", schema, "--context", context]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["name"] == "greet"
    assert output["fields"][0]["label"] == "Hello Asha"
    assert output["fields"][1]["visible"] is False


def test_run_prints_effects_and_diagnostics(tmp_path, capsys):
    actions = write(
        tmp_path / "actions.json",
        [
            {
                "condition": {"expression": "ageGroup == 'adult'"},
                "actions": [{"actionType": "EVENT", "properties": {"name": "adult"}}],
            },
            {
                "condition": {"expression": "DEFAULT"},
                "actions": [{"actionType": "EVENT", "properties": {"name": "default"}}],
            },
            {
                "actionType": "NAVIGATION",
                "properties": {"name": "next", "data": [{"key": "group", "value": "{{ageGroup}}"}]},
            },
            {"actionType": "SHOW_TOAST"},
        ],
    )
    context = write(tmp_path / "ctx.yaml", "formData:\n  ageGroup: adult\n")

    assert main(["run", actions, "--context", context]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["events"] == [{"name": "adult", "payload": {}}]
    assert output["navigation"] == [{"route": "next", "params": {"group": "adult"}}]
    assert output["context"]["navigationParams"] == {"group": "adult"}
    assert output["entities"] == {}
    assert [d["code"] for d in output["diagnostics"]] == ["unhandled_action_type"]


def test_run_accepts_actions_document_and_fetch(tmp_path, capsys, api_mock):
    actions = write(
        tmp_path / "screen.yaml",
        "actions:\n"
        "  - actionType: FETCH_TRANSFORMER\n"
        "    properties:\n"
        "      query: {url: /households, select: items}\n"
        "      resultKey: households\n",
    )

    assert main(["run", actions, "--base-url", api_mock.url_for("/")]) == 0

    output = json.loads(capsys.readouterr().out)
    assert [h["id"] for h in output["context"]["data"]["households"]] == ["h1", "h2"]


@pytest.mark.parametrize(
    "name,content,message",
    [
        ("actions.json", {"actions": "nope"}, "must contain a list of actions"),
        ("actions.yaml", "key: [broken", "Cannot parse"),
    ],
)
def test_run_rejects_bad_documents(tmp_path, capsys, name, content, message):
    path = write(tmp_path / name, content)

    assert main(["run", path]) == 1
    assert message in capsys.readouterr().err


def test_missing_files_and_bad_context(tmp_path, capsys):
    assert main(["run", str(tmp_path / "missing.json")]) == 1
    assert "Cannot read" in capsys.readouterr().err

    actions = write(tmp_path / "actions.json", [])
    context = write(tmp_path / "ctx.json", ["not", "an", "object"])
    assert main(["run", actions, "--context", context]) == 1
    assert "must contain an object" in capsys.readouterr().err


def test_bind_reports_invalid_schema(tmp_path, capsys):
    schema = write(tmp_path / "screen.yaml", "description: nameless\n")

    assert main(["bind", schema]) == 1
    assert "validation failed" in capsys.readouterr().err
