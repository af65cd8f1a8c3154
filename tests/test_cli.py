"""Tests for the Calctra CLI — proves CLI dispatches correctly."""

import json
from pathlib import Path

from calctra.cli import build_parser, main


def _write_commands(path: Path, commands: list) -> Path:
    path.write_text(json.dumps(commands), encoding="utf-8")
    return path


SCENARIO = [
    {
        "op": "register_resource", "caller": "provider-1",
        "capabilities": {"compute_power": 100, "memory": 64},
        "price_per_unit": "10", "location": "US",
    },
    {
        "op": "submit_request", "caller": "alice",
        "requirements": {"compute_power": 50, "memory": 32},
        "max_price_per_unit": "20", "preferred_location": "US",
    },
    {"op": "match_request", "caller": "authority", "request_id": 0, "resource_id": 0},
    {
        "op": "complete_computation", "caller": "alice",
        "request_id": 0, "resource_id": 0, "actual_duration": 10, "success": True,
    },
]


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"
        assert args.authority == "authority"

    def test_replay_command(self) -> None:
        args = build_parser().parse_args([
            "--authority", "root", "replay", "--file", "cmds.json", "--strict",
        ])
        assert args.command == "replay"
        assert args.file == Path("cmds.json")
        assert args.strict is True
        assert args.authority == "root"


class TestCLIExecution:
    def test_no_command_shows_help(self) -> None:
        assert main([]) == 0

    def test_status_runs(self, capsys) -> None:
        assert main(["status"]) == 0
        out = capsys.readouterr().out
        assert '"active_matches": 0' in out
        assert '"version": "0.1.0"' in out

    def test_policy_prints_json(self, capsys) -> None:
        assert main(["policy"]) == 0
        policy = json.loads(capsys.readouterr().out)
        assert policy["matching"]["max_engagements_per_resource"] == 1

    def test_replay_scenario(self, tmp_path: Path, capsys) -> None:
        path = _write_commands(tmp_path / "cmds.json", SCENARIO)
        log_path = tmp_path / "data" / "events.jsonl"
        assert main(["replay", "--file", str(path), "--event-log", str(log_path), "--strict"]) == 0
        out = capsys.readouterr().out
        assert "[3] complete_computation: ok" in out
        assert main(["verify-log", "--file", str(log_path)]) == 0

    def test_replay_strict_fails_on_rejection(self, tmp_path: Path) -> None:
        path = _write_commands(tmp_path / "cmds.json", SCENARIO + [SCENARIO[2]])
        assert main(["replay", "--file", str(path)]) == 0
        assert main(["replay", "--file", str(path), "--strict"]) == 1

    def test_replay_invalid_command(self, tmp_path: Path) -> None:
        path = _write_commands(tmp_path / "cmds.json", [{"op": "mint_tokens"}])
        assert main(["replay", "--file", str(path)]) == 1

    def test_replay_bad_capabilities_block(self, tmp_path: Path, capsys) -> None:
        bad = dict(SCENARIO[0], capabilities={"compute_power": 1, "memory": 1, "cpu": 4})
        path = _write_commands(tmp_path / "cmds.json", [bad])
        assert main(["replay", "--file", str(path)]) == 1
        assert "invalid command" in capsys.readouterr().err

    def test_replay_null_requirements(self, tmp_path: Path) -> None:
        bad = dict(SCENARIO[1], requirements=None)
        path = _write_commands(tmp_path / "cmds.json", [bad])
        assert main(["replay", "--file", str(path)]) == 1

    def test_replay_malformed_json(self, tmp_path: Path) -> None:
        path = tmp_path / "cmds.json"
        path.write_text("[{\"op\": ", encoding="utf-8")
        assert main(["replay", "--file", str(path)]) == 1

    def test_verify_log_detects_tampering(self, tmp_path: Path) -> None:
        log_path = tmp_path / "events.jsonl"
        path = _write_commands(tmp_path / "cmds.json", SCENARIO[:1])
        main(["replay", "--file", str(path), "--event-log", str(log_path)])
        text = log_path.read_text(encoding="utf-8").replace('"US"', '"EU"')
        log_path.write_text(text, encoding="utf-8")
        assert main(["verify-log", "--file", str(log_path)]) == 1

    def test_verify_log_missing_file(self, tmp_path: Path, capsys) -> None:
        assert main(["verify-log", "--file", str(tmp_path / "missing.jsonl")]) == 1
        assert "not found" in capsys.readouterr().err
