"""Containment checks for validate_path_within_repo."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from assistant_action.errors import PathEscapesRoot, RootNotFound, ValidationRejected
from assistant_action.security import validate_path_within_repo


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / "src").mkdir(parents=True)
    (root / "file.txt").write_text("hello", encoding="utf-8")
    (root / "src" / "main.py").write_text("print('hi')\n", encoding="utf-8")
    return root


def test_existing_file_returns_resolved_path(repo: Path):
    assert validate_path_within_repo("file.txt", repo) == Path(os.path.realpath(repo)) / "file.txt"


def test_nested_file_and_dot_segments_are_accepted(repo: Path):
    expected = Path(os.path.realpath(repo)) / "src" / "main.py"
    assert validate_path_within_repo("src/main.py", repo) == expected
    assert validate_path_within_repo("./src/../src/main.py", repo) == expected


def test_root_itself_is_inside(repo: Path):
    assert validate_path_within_repo(".", repo) == Path(os.path.realpath(repo))


def test_absolute_path_inside_root_is_accepted(repo: Path):
    target = repo / "file.txt"
    assert validate_path_within_repo(str(target), repo) == Path(os.path.realpath(target))


@pytest.mark.parametrize("candidate", ["../outside.txt", "src/../../outside.txt", "../../etc/passwd"])
def test_parent_traversal_is_rejected(repo: Path, candidate: str):
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo(candidate, repo)


def test_absolute_path_outside_root_is_rejected(repo: Path, tmp_path: Path):
    outside = tmp_path / "outside.txt"
    outside.write_text("x", encoding="utf-8")
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo(str(outside), repo)


def test_prefix_sibling_directory_is_rejected(repo: Path, tmp_path: Path):
    evil = tmp_path / "repo-evil"
    evil.mkdir()
    (evil / "secret.txt").write_text("x", encoding="utf-8")
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo("../repo-evil/secret.txt", repo)
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo(str(evil / "secret.txt"), repo)


def test_symlink_to_outside_file_is_rejected(repo: Path, tmp_path: Path):
    outside = tmp_path / "secret.txt"
    outside.write_text("secret", encoding="utf-8")
    (repo / "link.txt").symlink_to(outside)
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo("link.txt", repo)


def test_new_file_under_symlinked_outside_dir_is_rejected(repo: Path, tmp_path: Path):
    outside_dir = tmp_path / "elsewhere"
    outside_dir.mkdir()
    (repo / "escape").symlink_to(outside_dir, target_is_directory=True)
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo("escape/new.txt", repo)


def test_dangling_symlink_pointing_outside_is_rejected(repo: Path, tmp_path: Path):
    (repo / "dangling").symlink_to(tmp_path / "does-not-exist-yet.txt")
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo("dangling", repo)


def test_symlink_inside_root_is_followed(repo: Path):
    (repo / "alias.py").symlink_to(repo / "src" / "main.py")
    result = validate_path_within_repo("alias.py", repo)
    assert result == Path(os.path.realpath(repo)) / "src" / "main.py"


def test_symlinked_root_is_resolved(repo: Path, tmp_path: Path):
    link_root = tmp_path / "repo-link"
    link_root.symlink_to(repo, target_is_directory=True)
    result = validate_path_within_repo("file.txt", link_root)
    assert result == Path(os.path.realpath(repo)) / "file.txt"


def test_new_file_returns_lexical_path(repo: Path):
    result = validate_path_within_repo("src/new_module.py", repo)
    assert result == Path(os.path.normpath(os.path.abspath(repo))) / "src" / "new_module.py"
    assert not result.exists()


def test_new_file_in_missing_directory_is_rejected(repo: Path):
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo("missing/dir/new.txt", repo)


def test_missing_root_raises_root_not_found(tmp_path: Path):
    missing = tmp_path / "nope"
    for candidate in ("file.txt", "../x", "/etc/passwd"):
        with pytest.raises(RootNotFound, match="does not exist"):
            validate_path_within_repo(candidate, missing)


def test_validation_errors_are_value_errors(repo: Path):
    with pytest.raises(ValueError):
        validate_path_within_repo("../x", repo)
    assert issubclass(PathEscapesRoot, ValidationRejected)


def test_result_is_not_cached_between_calls(repo: Path, tmp_path: Path):
    target = repo / "later.txt"
    first = validate_path_within_repo("later.txt", repo)
    assert first == Path(os.path.normpath(os.path.abspath(repo))) / "later.txt"

    outside = tmp_path / "outside.txt"
    outside.write_text("x", encoding="utf-8")
    target.symlink_to(outside)
    with pytest.raises(PathEscapesRoot):
        validate_path_within_repo("later.txt", repo)
