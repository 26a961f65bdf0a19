"""Tests for the git publisher."""

from __future__ import annotations

from pathlib import Path

from guidesync.git.publisher import Publisher, find_repo_root


def _make_repo(tmp_path: Path, name: str = "repo") -> Path:
    repo = tmp_path / name
    repo.mkdir()
    (repo / ".git").mkdir()
    return repo


def test_publisher_adds_and_commits_files(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    agents = repo / "AGENTS.md"
    agents.write_text("content", encoding="utf-8")

    calls = []

    def runner(args, cwd, env=None, capture_output=False):
        calls.append((list(args), Path(cwd), capture_output, env))
        if capture_output and list(args)[:3] == ["git", "status", "--porcelain"]:
            return "A  AGENTS.md\n"
        return ""

    publisher = Publisher(runner=runner)
    result = publisher.commit(str(repo), [agents], message="docs: sync guidelines")

    assert result is True
    assert calls[0][0] == ["git", "add", "--", "AGENTS.md"]
    assert calls[0][1] == repo
    assert calls[1][0] == ["git", "status", "--porcelain", "--", "AGENTS.md"]
    assert calls[2][0] == ["git", "commit", "-m", "docs: sync guidelines", "--", "AGENTS.md"]
    assert calls[2][3]["GIT_AUTHOR_NAME"]


def test_publisher_skips_commit_without_changes(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    agents = repo / "AGENTS.md"
    agents.write_text("content", encoding="utf-8")

    calls = []

    def runner(args, cwd, env=None, capture_output=False):
        calls.append(list(args))
        return ""

    result = Publisher(runner=runner).commit(repo, [agents])

    assert result is False
    assert [call[1] for call in calls] == ["add", "status"]


def test_publisher_noop_without_git_repo(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    agents = repo / "AGENTS.md"
    agents.write_text("content", encoding="utf-8")

    calls = []

    def runner(args, cwd, env=None, capture_output=False):
        calls.append(list(args))
        return ""

    result = Publisher(runner=runner).commit(str(repo), [agents])

    assert not calls
    assert result is False


def test_commit_all_groups_files_by_work_tree(tmp_path: Path) -> None:
    first = _make_repo(tmp_path, "first")
    second = _make_repo(tmp_path, "second")
    (first / "api").mkdir()
    loose = tmp_path / "loose"
    loose.mkdir()
    files = [first / "api" / "AGENTS.md", second / "AGENTS.md", loose / "AGENTS.md"]
    for file in files:
        file.write_text("content", encoding="utf-8")

    commits = []

    def runner(args, cwd, env=None, capture_output=False):
        args = list(args)
        if args[1] == "status":
            return "M  changed\n"
        if args[1] == "commit":
            commits.append((Path(cwd), args[5:]))
        return ""

    committed = Publisher(runner=runner).commit_all(files, message="docs: sync")

    assert committed == [first, second]
    assert commits == [(first, ["api/AGENTS.md"]), (second, ["AGENTS.md"])]


def test_find_repo_root_walks_up(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    nested = repo / "services" / "api"
    nested.mkdir(parents=True)

    assert find_repo_root(nested / "AGENTS.md") == repo
    assert find_repo_root(tmp_path) is None
