import base64
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import (
    datetime,
    timezone,
)
from types import TracebackType

import requests
from github import (
    Github,
    GithubException,
    InputGitTreeElement,
)
from github.GithubObject import NotSet

from codeowners_reconcile.utils.exceptions import (
    GithubApiError,
    NotFoundError,
    TransientAPIFailure,
)
from codeowners_reconcile.utils.raw_github_api import (
    GH_BASE_URL,
    RawGithubApi,
)

MAX_FILE_CONTENT_SIZE = 1024**2  # 1MB

BRANCH_PREFIX = "refs/heads/"


@dataclass
class TreeEntry:
    """
    A change to apply on top of a base tree. An entry without content
    removes the path from the tree.
    """

    path: str
    content: str | None = None
    mode: str = "100644"
    type: str = "blob"


@dataclass
class CommitAuthor:
    name: str
    email: str
    date: datetime

    @property
    def timestamp(self) -> int:
        return int(self.date.timestamp())

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "email": self.email,
            "date": self.date.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }


@dataclass
class CommitInfo:
    sha: str
    tree_sha: str


@dataclass
class FileContent:
    path: str
    sha: str
    content: str


class GithubRepositoryApi:
    """
    Github client exposing the git primitives needed to commit
    CODEOWNERS changes through a pull request.

    Every PyGithub/requests error is translated into a GithubApiError
    carrying the operation and the repository it failed on.

    :param owner: repository owner (user or organization)
    :param repo: repository name
    :param token: auth token for Github
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        base_url: str = GH_BASE_URL,
        timeout: int = 30,
        github: Github | None = None,
        raw_github: RawGithubApi | None = None,
    ):
        self.owner = owner
        self.repo = repo

        git_cli = github
        if not git_cli:
            git_cli = Github(token, base_url=base_url.rstrip("/"), timeout=timeout)
        self._raw = raw_github or RawGithubApi(token, base_url=base_url)
        with self._api_errors("get-repository"):
            self._repo = git_cli.get_repo(self.full_name)

    def __enter__(self) -> "GithubRepositoryApi":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.cleanup()

    def __str__(self) -> str:
        return self.full_name

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def cleanup(self) -> None:
        """
        Nothing to release, PyGithub connections are per request
        """

    @contextmanager
    def _api_errors(self, operation: str, target: str = "") -> Iterator[None]:
        where = f"{self.full_name} {target}".strip()
        try:
            yield
        except GithubException as e:
            msg = f"{operation} failed on {where}: {e.data}"
            if e.status == 404:
                raise NotFoundError(msg, e.status) from e
            if e.status >= 500:
                raise TransientAPIFailure(msg, e.status) from e
            raise GithubApiError(msg, e.status) from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            msg = f"{operation} failed on {where}: {e}"
            if status == 404:
                raise NotFoundError(msg, status) from e
            if status is None or status >= 500:
                raise TransientAPIFailure(msg, status) from e
            raise GithubApiError(msg, status) from e
        except requests.RequestException as e:
            raise TransientAPIFailure(f"{operation} failed on {where}: {e}") from e

    def get_default_branch(self) -> str:
        return self._repo.default_branch

    def get_branch_sha(self, branch: str) -> str:
        with self._api_errors("get-ref", branch):
            return self._repo.get_git_ref(f"heads/{branch}").object.sha

    def get_commit(self, sha: str) -> CommitInfo:
        with self._api_errors("get-commit", sha):
            commit = self._repo.get_git_commit(sha)
            return CommitInfo(sha=commit.sha, tree_sha=commit.tree.sha)

    def create_tree(self, entries: list[TreeEntry], base_tree_sha: str = "") -> str:
        elements = []
        for e in entries:
            if e.content is None:
                # a null sha removes the path from the tree
                elements.append(
                    InputGitTreeElement(path=e.path, mode=e.mode, type=e.type, sha=None)
                )
            else:
                elements.append(
                    InputGitTreeElement(
                        path=e.path, mode=e.mode, type=e.type, content=e.content
                    )
                )
        with self._api_errors("create-tree", base_tree_sha):
            base_tree = (
                self._repo.get_git_tree(base_tree_sha) if base_tree_sha else NotSet
            )
            return self._repo.create_git_tree(elements, base_tree).sha

    def create_commit(
        self,
        message: str,
        tree_sha: str,
        parent_sha: str,
        author: CommitAuthor,
        signature: str | None = None,
    ) -> str:
        data = {
            "message": message,
            "tree": tree_sha,
            "parents": [parent_sha],
            "author": author.to_dict(),
            "committer": author.to_dict(),
        }
        if signature:
            data["signature"] = signature
        with self._api_errors("create-commit", tree_sha):
            return self._raw.create_commit(self.owner, self.repo, data)

    def create_ref(self, ref: str, sha: str) -> str:
        with self._api_errors("create-ref", ref):
            return self._repo.create_git_ref(ref=ref, sha=sha).ref

    def delete_ref(self, ref: str) -> None:
        with self._api_errors("delete-ref", ref):
            self._repo.get_git_ref(ref.removeprefix("refs/")).delete()

    def create_pull_request(
        self, title: str, head: str, base: str, body: str = ""
    ) -> int:
        with self._api_errors("create-pull-request", f"{head} -> {base}"):
            pr = self._repo.create_pull(
                base=base,
                head=head.removeprefix(BRANCH_PREFIX),
                title=title,
                body=body,
                maintainer_can_modify=False,
            )
            return pr.number

    def merge_pull_request(
        self, number: int, commit_message: str, merge_method: str = "merge"
    ) -> None:
        with self._api_errors("merge-pull-request", f"#{number}"):
            status = self._repo.get_pull(number).merge(
                commit_message=commit_message, merge_method=merge_method
            )
        if not status.merged:
            raise GithubApiError(
                f"merge-pull-request failed on {self.full_name} #{number}: "
                f"{status.message}"
            )

    def close_pull_request(self, number: int) -> None:
        with self._api_errors("edit-pull-request", f"#{number}"):
            self._repo.get_pull(number).edit(state="closed")

    def get_file(self, path: str, ref: str | None = None) -> FileContent:
        """
        Fetch a file, from the default branch when no ref is given.

        :raises NotFoundError: the path (or ref) does not exist
        """
        with self._api_errors("get-file-contents", f"{path}@{ref or 'default'}"):
            content = (
                self._repo.get_contents(path=path, ref=ref)
                if ref
                else self._repo.get_contents(path=path)
            )
            if isinstance(content, list):
                raise GithubApiError(f"{path} in {self.full_name} is a directory!")
            if content.size < MAX_FILE_CONTENT_SIZE:
                raw = content.decoded_content
            else:
                raw = base64.b64decode(self._repo.get_git_blob(content.sha).content)
        return FileContent(path=content.path, sha=content.sha, content=raw.decode())
