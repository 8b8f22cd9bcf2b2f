"""Tests for the command line entry point."""
from __future__ import annotations

import asyncio
import json
import textwrap

import pytest

from media_orchestrator.cli import build_parser, main
from media_orchestrator.models import GroupStatus
from media_orchestrator.state import StateManager

JOB = """
    batch_id: cli-test
    max_group_duration: 10
    shots:
      - id: s1
        duration: 6
        visual_description: A lighthouse in the storm
      - id: s2
        duration: 6
        visual_description: Waves against the rocks
      - id: s3
        duration: 3
        visual_description: The lamp goes dark
"""


@pytest.fixture
def job_file(tmp_path):
    path = tmp_path / "job.yaml"
    path.write_text(textwrap.dedent(JOB), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def no_provider_keys(monkeypatch):
    for name in ("KIE", "SUTU", "YUNWU", "YIJIAPI"):
        monkeypatch.delenv(f"{name}_API_KEY", raising=False)


def _load(db):
    async def run():
        store = StateManager(db)
        try:
            return await store.load_groups("cli-test")
        finally:
            await store.close()
    return asyncio.run(run())


def test_parser_subcommands():
    parser = build_parser()
    args = parser.parse_args(["generate", "job.yaml", "--dry-run", "--max-duration", "12"])
    assert args.subcommand == "generate"
    assert args.dry_run is True
    assert args.max_duration == 12.0

    args = parser.parse_args(["health", "--reset"])
    assert args.reset == ""
    args = parser.parse_args(["health", "--reset", "sora-2-kie"])
    assert args.reset == "sora-2-kie"
    args = parser.parse_args(["health"])
    assert args.reset is None

    args = parser.parse_args(["priority", "video", "--set", "a", "b"])
    assert args.set == ["a", "b"]


def test_no_subcommand_prints_help():
    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 2


def test_plan_prints_groups(job_file, capsys):
    main(["plan", str(job_file), "--show-prompts"])
    out = capsys.readouterr().out
    assert "3 shot(s)" in out
    assert "2 task group(s)" in out
    assert "cli-test-tg02" in out
    assert "Scene: The lamp goes dark" in out


def test_plan_with_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["plan", str(tmp_path / "nope.yaml")])
    assert exc.value.code == 1


def test_generate_without_keys_fails(job_file, tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["generate", str(job_file), "--db", str(tmp_path / "s.db"), "--quiet"])
    assert exc.value.code == 1


def test_dry_run_generates_and_persists(job_file, tmp_path, capsys):
    db = tmp_path / "state.db"
    calls = tmp_path / "calls.jsonl"
    with pytest.raises(SystemExit) as exc:
        main(["generate", str(job_file), "--dry-run", "--quiet",
              "--db", str(db), "--log-calls", str(calls)])
    assert exc.value.code == 0

    groups = _load(db)
    assert [g.status for g in groups] == [GroupStatus.COMPLETED, GroupStatus.COMPLETED]
    assert all(g.model_id == "mock-video" for g in groups)
    assert all(g.result_url.startswith("https://mock.invalid/") for g in groups)
    rows = [json.loads(line) for line in calls.read_text().splitlines()]
    assert {r["kind"] for r in rows} == {"submission", "polling"}

    capsys.readouterr()
    with pytest.raises(SystemExit) as exc:
        main(["status", "--db", str(db)])
    assert exc.value.code == 0
    assert "cli-test" in capsys.readouterr().out

    with pytest.raises(SystemExit) as exc:
        main(["resume", "--db", str(db), "--quiet"])
    assert exc.value.code == 0
    assert "No in-flight task groups." in capsys.readouterr().out


def test_health_and_priority_commands(tmp_path, capsys):
    db = str(tmp_path / "state.db")
    with pytest.raises(SystemExit) as exc:
        main(["health", "--db", db])
    assert exc.value.code == 0
    assert "No health data" in capsys.readouterr().out

    # no provider keys: nothing to order
    with pytest.raises(SystemExit) as exc:
        main(["priority", "video", "--db", db])
    assert exc.value.code == 1
