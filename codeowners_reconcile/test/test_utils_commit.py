import threading
from unittest.mock import (
    MagicMock,
    create_autospec,
)

import pytest
from pytest_mock import MockerFixture

from codeowners_reconcile.utils.commit import (
    CommitOptions,
    RetryPolicy,
    build_commit,
    create_commit,
    default_pull_request_branch,
)
from codeowners_reconcile.utils.exceptions import (
    ApplyCancelledError,
    DecryptionFailedError,
    GithubApiError,
    MergeFailedError,
    NotFoundError,
)
from codeowners_reconcile.utils.github_api import (
    CommitInfo,
    GithubRepositoryApi,
    TreeEntry,
)


@pytest.fixture
def api() -> MagicMock:
    api = create_autospec(GithubRepositoryApi, instance=True)
    api.full_name = "my/repo"
    api.get_default_branch.return_value = "main"
    api.get_branch_sha.return_value = "tip-sha"
    api.get_commit.return_value = CommitInfo(sha="tip-sha", tree_sha="tip-tree")
    api.create_tree.return_value = "new-tree"
    api.create_commit.return_value = "new-commit"
    api.create_ref.return_value = "refs/heads/tmp"
    api.create_pull_request.return_value = 42
    return api


def options(**kwargs) -> CommitOptions:
    defaults = {
        "repo_owner": "my",
        "repo_name": "repo",
        "commit_message": "Updating CODEOWNERS file",
        "changes": [TreeEntry(path=".github/CODEOWNERS", content="* @jim\n")],
        "username": "bot",
        "email": "bot@example.com",
        "pull_request_branch": "tmp",
        "retry": RetryPolicy(max_attempts=3, backoff=1),
    }
    defaults.update(kwargs)
    return CommitOptions(**defaults)


def merge_failure(status: int = 405) -> GithubApiError:
    return GithubApiError("Base branch was modified", status)


def test_retry_policy_defaults() -> None:
    policy = RetryPolicy(max_attempts=0, backoff=0)
    assert policy.max_attempts == 3
    assert policy.backoff == 5.0


def test_retry_policy_wait_sleeps(patch_sleep: MagicMock) -> None:
    RetryPolicy(backoff=2).wait()
    patch_sleep.assert_called_once_with(2)


def test_retry_policy_wait_cancelled() -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ApplyCancelledError):
        RetryPolicy(backoff=10).wait(cancel)


def test_retry_policy_wait_not_cancelled() -> None:
    cancel = MagicMock(spec=threading.Event)
    cancel.wait.return_value = False
    RetryPolicy(backoff=10).wait(cancel)
    cancel.wait.assert_called_once_with(10)


def test_default_pull_request_branch() -> None:
    first = default_pull_request_branch()
    assert first.startswith("codeowners-reconcile-")
    assert CommitOptions("o", "r", "m", [], "u", "e").pull_request_branch.startswith(
        "codeowners-reconcile-"
    )


def test_build_commit_unsigned(api: MagicMock, mocker: MockerFixture) -> None:
    gpg_sign = mocker.patch("codeowners_reconcile.utils.commit.gpg_sign")
    check_key = mocker.patch("codeowners_reconcile.utils.commit.check_key")
    opts = options()

    assert build_commit(api, opts, "tip-sha") == "new-commit"

    api.get_commit.assert_called_once_with("tip-sha")
    api.create_tree.assert_called_once_with(opts.changes, "tip-tree")
    gpg_sign.assert_not_called()
    check_key.assert_not_called()
    kwargs = api.create_commit.call_args.kwargs
    assert kwargs["tree_sha"] == "new-tree"
    assert kwargs["parent_sha"] == "tip-sha"
    assert kwargs["signature"] is None
    assert kwargs["author"].name == "bot"
    assert kwargs["author"].email == "bot@example.com"
    assert kwargs["message"] == "Updating CODEOWNERS file"


def test_build_commit_signed(api: MagicMock, mocker: MockerFixture) -> None:
    check_key = mocker.patch("codeowners_reconcile.utils.commit.check_key")
    gpg_sign = mocker.patch(
        "codeowners_reconcile.utils.commit.gpg_sign", return_value="signature"
    )
    build_commit(
        api, options(gpg_private_key="key", gpg_passphrase="pass"), "tip-sha"
    )

    author = api.create_commit.call_args.kwargs["author"]
    payload, key, passphrase = gpg_sign.call_args.args
    assert payload == (
        "tree new-tree\n"
        "parent tip-sha\n"
        f"author bot <bot@example.com> {author.timestamp} +0000\n"
        f"committer bot <bot@example.com> {author.timestamp} +0000\n"
        "\n"
        "Updating CODEOWNERS file"
    )
    assert (key, passphrase) == ("key", "pass")
    check_key.assert_called_once_with("key", "pass")
    assert api.create_commit.call_args.kwargs["signature"] == "signature"


@pytest.mark.parametrize("override", ["", "other-tree"])
def test_build_commit_base_tree_override(api: MagicMock, override: str) -> None:
    opts = options(base_tree_override=override)
    build_commit(api, opts, "tip-sha")
    api.create_tree.assert_called_once_with(opts.changes, override)


def test_create_commit_merged_first_time(api: MagicMock, patch_sleep: MagicMock) -> None:
    result = create_commit(api, options(branch="develop"))

    api.get_default_branch.assert_not_called()
    api.get_branch_sha.assert_called_once_with("develop")
    api.create_ref.assert_called_once_with("refs/heads/tmp", "new-commit")
    api.create_pull_request.assert_called_once_with(
        title="Updating CODEOWNERS file",
        head="refs/heads/tmp",
        base="develop",
        body="",
    )
    api.merge_pull_request.assert_called_once_with(
        42, "Updating CODEOWNERS file", merge_method="merge"
    )
    api.delete_ref.assert_called_once_with("refs/heads/tmp")
    api.close_pull_request.assert_not_called()
    patch_sleep.assert_not_called()
    assert result.branch == "develop"
    assert result.commit_sha == "new-commit"
    assert result.pull_request_number == 42
    assert result.pull_request_branch == "refs/heads/tmp"


def test_create_commit_default_branch(api: MagicMock, patch_sleep: MagicMock) -> None:
    result = create_commit(api, options())
    api.get_default_branch.assert_called_once_with()
    api.get_branch_sha.assert_called_once_with("main")
    assert api.create_pull_request.call_args.kwargs["base"] == "main"
    assert result.branch == "main"


def test_create_commit_keeps_ref_prefix(api: MagicMock, patch_sleep: MagicMock) -> None:
    create_commit(api, options(pull_request_branch="refs/heads/custom"))
    api.create_ref.assert_called_once_with("refs/heads/custom", "new-commit")


def test_create_commit_merged_after_retries(
    api: MagicMock, patch_sleep: MagicMock
) -> None:
    api.merge_pull_request.side_effect = [merge_failure(), merge_failure(), None]

    create_commit(api, options(retry=RetryPolicy(max_attempts=3, backoff=1)))

    assert api.merge_pull_request.call_count == 3
    assert patch_sleep.call_count == 2
    api.delete_ref.assert_called_once_with("refs/heads/tmp")
    api.close_pull_request.assert_not_called()


def test_create_commit_merge_failed(api: MagicMock, patch_sleep: MagicMock) -> None:
    api.merge_pull_request.side_effect = merge_failure(405)

    with pytest.raises(MergeFailedError) as e:
        create_commit(api, options(retry=RetryPolicy(max_attempts=3, backoff=1)))

    assert e.value.status == 405
    assert e.value.pull_request == 42
    assert "HTTP 405" in str(e.value)
    assert "Base branch was modified" in str(e.value)
    assert api.merge_pull_request.call_count == 3
    # no sleep after the last attempt
    assert patch_sleep.call_count == 2
    api.close_pull_request.assert_called_once_with(42)
    api.delete_ref.assert_not_called()


def test_create_commit_merge_failed_close_fails(
    api: MagicMock, patch_sleep: MagicMock
) -> None:
    api.merge_pull_request.side_effect = merge_failure(409)
    api.close_pull_request.side_effect = GithubApiError("boom", 500)

    with pytest.raises(MergeFailedError) as e:
        create_commit(api, options())
    assert e.value.status == 409


def test_create_commit_delete_ref_fails(api: MagicMock, patch_sleep: MagicMock) -> None:
    api.delete_ref.side_effect = GithubApiError("boom", 422)
    result = create_commit(api, options())
    assert result.commit_sha == "new-commit"


def test_create_commit_cancelled_between_attempts(api: MagicMock) -> None:
    api.merge_pull_request.side_effect = merge_failure()
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(ApplyCancelledError):
        create_commit(api, options(), cancel=cancel)
    assert api.merge_pull_request.call_count == 1
    api.close_pull_request.assert_not_called()


def test_create_commit_signing_error_aborts(
    api: MagicMock, mocker: MockerFixture
) -> None:
    mocker.patch(
        "codeowners_reconcile.utils.commit.check_key",
        side_effect=DecryptionFailedError("wrong or missing passphrase"),
    )
    gpg_sign = mocker.patch("codeowners_reconcile.utils.commit.gpg_sign")
    with pytest.raises(DecryptionFailedError):
        create_commit(api, options(gpg_private_key="key"))
    api.create_tree.assert_not_called()
    gpg_sign.assert_not_called()
    api.create_commit.assert_not_called()
    api.create_ref.assert_not_called()
    api.create_pull_request.assert_not_called()


def test_create_commit_branch_not_found(api: MagicMock) -> None:
    api.get_branch_sha.side_effect = NotFoundError("get-ref failed", 404)
    with pytest.raises(NotFoundError):
        create_commit(api, options(branch="missing"))
    api.create_tree.assert_not_called()
