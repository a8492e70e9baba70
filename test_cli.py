"""
CLI tests: argument parsing and async_main against temp plan files.
"""

import json
import shutil
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from cli import async_main, create_parser


README = "# Blog\n\nA small blog built from a plan.\n"


@pytest.fixture
def workdir():
    """Temp dir holding a project, a plan and a config with no delays."""
    root = Path(tempfile.mkdtemp(prefix="planrunner_cli_"))
    (root / "app").mkdir()
    (root / "plan.json").write_text(json.dumps({
        "metadata": {"userRequest": "Write a README"},
        "planning": {
            "plan": {
                "filesToCreate": [{"path": "README.md", "purpose": "docs"}],
                "executionOrder": ["1. README.md 생성"],
            },
            "codeBlocks": [{"filePath": "README.md", "language": "markdown", "content": README}],
        },
    }))
    (root / "config.yaml").write_text(
        "timing:\n  file_delay: 0\n  command_delay: 0\n"
        "  port_release_wait: 0\n  rebuild_wait: 0\n"
    )
    yield root
    shutil.rmtree(root, ignore_errors=True)


def parse(*argv):
    return create_parser().parse_args(list(argv))


def test_parser_defaults():
    args = parse("plan.json")
    assert args.plan == Path("plan.json")
    assert args.steps is None
    assert not args.no_chat
    assert not args.stop_on_failure


def test_parser_repeated_steps():
    assert parse("plan.json", "-s", "0", "--step", "3").steps == [0, 3]


@pytest.mark.asyncio
async def test_list_only(workdir):
    code = await async_main(parse(str(workdir / "plan.json"), "--list",
                                  "--config", str(workdir / "config.yaml")))
    assert code == 0
    assert not (workdir / "app" / "README.md").exists()


@pytest.mark.asyncio
async def test_runs_the_plan(workdir):
    code = await async_main(parse(
        str(workdir / "plan.json"),
        "--project", str(workdir / "app"),
        "--config", str(workdir / "config.yaml"),
        "--no-chat",
    ))
    assert code == 0
    assert (workdir / "app" / "README.md").read_text(encoding="utf-8") == README


@pytest.mark.asyncio
async def test_unknown_step_index(workdir):
    code = await async_main(parse(
        str(workdir / "plan.json"),
        "--project", str(workdir / "app"),
        "--config", str(workdir / "config.yaml"),
        "--step", "4",
    ))
    assert code == 1


@pytest.mark.asyncio
async def test_missing_plan_and_config(workdir):
    assert await async_main(parse(str(workdir / "nope.json"),
                                  "--config", str(workdir / "config.yaml"))) == 1
    assert await async_main(parse(str(workdir / "plan.json"),
                                  "--config", str(workdir / "nope.yaml"))) == 1


@pytest.mark.asyncio
async def test_invalid_plan_document(workdir):
    (workdir / "bad.json").write_text(json.dumps({"planning": {"tasks": [{"target": "x"}]}}))
    code = await async_main(parse(str(workdir / "bad.json"), "--list",
                                  "--config", str(workdir / "config.yaml")))
    assert code == 1
