"""Tests for the pixflake command line."""

import json
from pathlib import Path

import pytest

from pixflake.constants import default_system, host_system
from pixflake.evaluator import evaluate_path
from pixflake.main import main, parse_installable, to_json

EXAMPLE = Path(__file__).resolve().parent.parent / "examples" / "hello"


@pytest.mark.parametrize("text, expected", [
    (".#packages.hello", (".", ["packages", "hello"])),
    ("#default", (".", ["default"])),
    ("../flakes/app", ("../flakes/app", [])),
    ("/srv/flake#", ("/srv/flake", [])),
])
def test_parse_installable(text, expected):
    assert parse_installable(text) == expected


def test_eval_string(capsys):
    main(["eval", "--system", "x86_64-linux", f"{EXAMPLE}#packages.hello"])
    assert capsys.readouterr().out.strip() == "hello-2.12.1"


def test_eval_json(capsys):
    main(["eval", "--system", "aarch64-linux", "--json", f"{EXAMPLE}#packages"])
    assert json.loads(capsys.readouterr().out) == {
        "hello": "hello-2.12.1",
        "greeting": "hello-2.12.1 says hi on aarch64-linux",
    }


def test_eval_missing_attribute(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["eval", "--system", "x86_64-linux", f"{EXAMPLE}#packages.nope"])
    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert err.startswith("error: MissingAttributeError")
    assert "'nope'" in err


def test_eval_missing_outputs(tmp_path, capsys):
    (tmp_path / "flake.py").write_text('description = "no outputs"\n')
    with pytest.raises(SystemExit) as exc:
        main(["eval", f"{tmp_path}#description"])
    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert "MissingOutputsError" in err
    assert "flake.py" in err
    assert "(outputs)" in err


def test_show(capsys):
    main(["show", "--system", "x86_64-linux", str(EXAMPLE)])
    out = capsys.readouterr().out
    assert "hello, with a greeting overlay" in out
    assert "├── packages" in out
    assert "greeting" in out
    assert "pkgsConfig" in out


def test_no_command(capsys):
    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 1


def test_to_json_skips_self():
    data = to_json(evaluate_path(EXAMPLE, "x86_64-linux"))
    assert "self" not in data
    assert data["default"] == "hello-2.12.1"
    assert data["overlays"]["greeting"] == "«function greeting»"


def test_system_from_environment(monkeypatch):
    monkeypatch.setenv("PIXFLAKE_SYSTEM", "riscv64-linux")
    assert default_system() == "riscv64-linux"
    monkeypatch.delenv("PIXFLAKE_SYSTEM")
    assert default_system() == host_system()
    assert "-" in host_system()
