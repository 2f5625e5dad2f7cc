import logging
import threading
import time
from dataclasses import (
    dataclass,
    field,
)
from datetime import (
    datetime,
    timezone,
)

from codeowners_reconcile.utils.exceptions import (
    ApplyCancelledError,
    GithubApiError,
    MergeFailedError,
)
from codeowners_reconcile.utils.github_api import (
    BRANCH_PREFIX,
    CommitAuthor,
    GithubRepositoryApi,
    TreeEntry,
)
from codeowners_reconcile.utils.gpg import (
    check_key,
    commit_payload,
    gpg_sign,
)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 5.0
PULL_REQUEST_BRANCH_PREFIX = "codeowners-reconcile"

LOG = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """
    How often and how patiently a pull request merge is attempted.

    Right after a pull request is opened GitHub may still be computing
    its mergeability, so the first merge attempts are expected to fail.
    """

    max_attempts: int = DEFAULT_MAX_RETRIES
    backoff: float = DEFAULT_RETRY_BACKOFF

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            self.max_attempts = DEFAULT_MAX_RETRIES
        if self.backoff <= 0:
            self.backoff = DEFAULT_RETRY_BACKOFF

    def wait(self, cancel: threading.Event | None = None) -> None:
        if cancel is None:
            time.sleep(self.backoff)
        elif cancel.wait(self.backoff):
            raise ApplyCancelledError("cancelled while waiting to retry the merge")


def default_pull_request_branch() -> str:
    return f"{PULL_REQUEST_BRANCH_PREFIX}-{time.time_ns()}"


@dataclass
class CommitOptions:
    repo_owner: str
    repo_name: str
    commit_message: str
    changes: list[TreeEntry]
    username: str
    email: str
    # empty means the repository default branch
    branch: str = ""
    gpg_private_key: str = ""  # ascii armored
    gpg_passphrase: str = ""
    # None: tree of the branch tip, "": no base tree
    base_tree_override: str | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    pull_request_branch: str = field(default_factory=default_pull_request_branch)
    pull_request_body: str = ""
    merge_method: str = "merge"


@dataclass
class ApplyResult:
    branch: str
    commit_sha: str
    pull_request_number: int
    pull_request_branch: str


def build_commit(
    api: GithubRepositoryApi, options: CommitOptions, parent_sha: str
) -> str:
    """
    Create a tree with the requested changes and a commit on top of
    parent_sha pointing to it. The commit is signed when a gpg private
    key is configured.

    The key is checked before anything is written, a bad key or
    passphrase leaves the repository untouched.

    :return: SHA of the new commit
    """
    if options.gpg_private_key:
        check_key(options.gpg_private_key, options.gpg_passphrase)

    parent = api.get_commit(parent_sha)
    base_tree = (
        parent.tree_sha
        if options.base_tree_override is None
        else options.base_tree_override
    )
    tree_sha = api.create_tree(options.changes, base_tree)

    author = CommitAuthor(
        name=options.username,
        email=options.email,
        date=datetime.now(timezone.utc).replace(microsecond=0),
    )

    signature = None
    if options.gpg_private_key:
        payload = commit_payload(
            tree_sha=tree_sha,
            parent_sha=parent.sha,
            name=author.name,
            email=author.email,
            timestamp=author.timestamp,
            message=options.commit_message,
        )
        signature = gpg_sign(
            payload, options.gpg_private_key, options.gpg_passphrase
        )

    sha = api.create_commit(
        message=options.commit_message,
        tree_sha=tree_sha,
        parent_sha=parent.sha,
        author=author,
        signature=signature,
    )
    LOG.debug(["create_commit", api.full_name, sha, "signed" if signature else ""])
    return sha


def _delete_pull_request_branch(api: GithubRepositoryApi, ref: str) -> None:
    try:
        api.delete_ref(ref)
    except GithubApiError as e:
        LOG.warning(f"Failed to delete branch {ref} in {api}. Reason: {e}")


def _close_pull_request(api: GithubRepositoryApi, number: int) -> None:
    try:
        api.close_pull_request(number)
    except GithubApiError as e:
        LOG.warning(f"Failed to close PR #{number} in {api}. Reason: {e}")


def create_commit(
    api: GithubRepositoryApi,
    options: CommitOptions,
    cancel: threading.Event | None = None,
) -> ApplyResult:
    """
    Commit options.changes to the target branch through a pull request.

    The commit is created on a temporary branch, a pull request is
    opened against the target branch and merged, retrying according to
    options.retry. After a successful merge the temporary branch is
    removed. If the pull request can't be merged it is closed and the
    temporary branch is left behind for inspection.

    There is no rollback: a failure leaves the repository in the state
    the last successful step produced.

    :param cancel: when set while waiting between merge attempts, the
        apply stops with ApplyCancelledError
    :raises MergeFailedError: the retry budget is exhausted
    """
    branch = options.branch or api.get_default_branch()
    tip_sha = api.get_branch_sha(branch)

    commit_sha = build_commit(api, options, tip_sha)

    ref = options.pull_request_branch
    if not ref.startswith(BRANCH_PREFIX):
        ref = f"{BRANCH_PREFIX}{ref}"
    api.create_ref(ref, commit_sha)

    number = api.create_pull_request(
        title=options.commit_message,
        head=ref,
        base=branch,
        body=options.pull_request_body,
    )
    LOG.info(["create_pull_request", api.full_name, branch, number])

    last_error: GithubApiError | None = None
    for attempt in range(1, options.retry.max_attempts + 1):
        try:
            api.merge_pull_request(
                number, options.commit_message, merge_method=options.merge_method
            )
        except GithubApiError as e:
            last_error = e
            LOG.debug(
                f"merge of PR #{number} in {api} failed "
                f"(attempt {attempt}/{options.retry.max_attempts}): {e}"
            )
            if attempt < options.retry.max_attempts:
                options.retry.wait(cancel)
            continue

        LOG.info(["merge_pull_request", api.full_name, branch, number])
        _delete_pull_request_branch(api, ref)
        return ApplyResult(
            branch=branch,
            commit_sha=commit_sha,
            pull_request_number=number,
            pull_request_branch=ref,
        )

    _close_pull_request(api, number)
    raise MergeFailedError(
        number,
        last_error.status if last_error else None,
        last_error,
    ) from last_error
