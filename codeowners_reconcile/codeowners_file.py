import logging
import threading
from collections.abc import Callable
from dataclasses import (
    dataclass,
    field,
)

from sretoolbox.utils import threaded

from codeowners_reconcile.desired_state import (
    CodeownersFileV1,
    RuleV1,
    load_desired_state,
)
from codeowners_reconcile.utils.commit import (
    CommitOptions,
    RetryPolicy,
    create_commit,
)
from codeowners_reconcile.utils.config import (
    GithubSettings,
    format_commit_message,
    get_github_settings,
)
from codeowners_reconcile.utils.diff_cache import (
    DiffResultCache,
    usernames_diff_suppressed,
)
from codeowners_reconcile.utils.exceptions import NotFoundError
from codeowners_reconcile.utils.github_api import (
    GithubRepositoryApi,
    TreeEntry,
)
from codeowners_reconcile.utils.ruleset import Ruleset

INTEGRATION = "codeowners-file"

CODEOWNERS_PATH = ".github/CODEOWNERS"

LOG = logging.getLogger(__name__)


@dataclass
class File:
    repository_owner: str
    repository_name: str
    # empty means the repository default branch, resolved at write time
    branch: str = ""
    ruleset: Ruleset = field(default_factory=Ruleset)

    @property
    def id(self) -> str:
        return f"{self.repository_owner}/{self.repository_name}:{self.branch}"

    @classmethod
    def from_id(cls, identity: str) -> "File":
        """
        Parse an `<owner>/<name>:<branch>` identity, the branch part may
        be empty or missing.
        """
        owner, sep, rest = identity.partition("/")
        name, _, branch = rest.partition(":")
        if not sep or not owner or not name:
            raise ValueError(
                f"invalid CODEOWNERS file id {identity!r}, "
                "expected <owner>/<name>:<branch>"
            )
        return cls(repository_owner=owner, repository_name=name, branch=branch)

    @classmethod
    def from_desired(cls, desired: CodeownersFileV1) -> "File":
        return cls(
            repository_owner=desired.repository_owner,
            repository_name=desired.repository_name,
            branch=desired.branch,
            ruleset=desired.ruleset(),
        )

    def to_desired(self) -> CodeownersFileV1:
        return CodeownersFileV1(
            repository_owner=self.repository_owner,
            repository_name=self.repository_name,
            branch=self.branch,
            rules=[
                RuleV1(pattern=r.pattern, usernames=sorted(r.usernames))
                for r in self.ruleset
            ],
        )


@dataclass
class RuleDiff:
    action: str
    pattern: str
    current: list[str] | None = None
    desired: list[str] | None = None


ApiFactory = Callable[[str, str], GithubRepositoryApi]


class CodeownersFileResource:
    """
    Lifecycle of the CODEOWNERS file of a single repository branch.

    Every change is committed through a temporary branch and a pull
    request, see `create_commit`.
    """

    def __init__(
        self,
        settings: GithubSettings,
        api_factory: ApiFactory | None = None,
        diff_cache: DiffResultCache | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.settings = settings
        self._api_factory = api_factory or self._github_api
        self.diff_cache = diff_cache
        self.cancel = cancel

    def _github_api(self, owner: str, repo: str) -> GithubRepositoryApi:
        return GithubRepositoryApi(
            owner=owner,
            repo=repo,
            token=self.settings.token,
            base_url=self.settings.api_url,
        )

    def _commit_options(
        self, file: File, message: str, changes: list[TreeEntry]
    ) -> CommitOptions:
        return CommitOptions(
            repo_owner=file.repository_owner,
            repo_name=file.repository_name,
            commit_message=format_commit_message(
                self.settings.commit_message_prefix, message
            ),
            changes=changes,
            username=self.settings.username,
            email=self.settings.email,
            branch=file.branch,
            gpg_private_key=self.settings.gpg_private_key,
            gpg_passphrase=self.settings.gpg_passphrase,
            retry=RetryPolicy(
                max_attempts=self.settings.max_retries,
                backoff=self.settings.retry_backoff,
            ),
            merge_method=self.settings.merge_method,
        )

    def read(self, file: File) -> File | None:
        """
        Current state of the file, None if the repository, branch or
        file does not exist.
        """
        try:
            api = self._api_factory(file.repository_owner, file.repository_name)
            content = api.get_file(CODEOWNERS_PATH, ref=file.branch or None)
        except NotFoundError:
            LOG.debug(f"{CODEOWNERS_PATH} not found for {file.id}")
            return None
        return File(
            repository_owner=file.repository_owner,
            repository_name=file.repository_name,
            branch=file.branch,
            ruleset=Ruleset.parse(content.content),
        )

    def create(self, file: File) -> File:
        return self._write(file, "Adding CODEOWNERS file")

    def update(self, file: File) -> File:
        return self._write(file, "Updating CODEOWNERS file")

    def _write(self, file: File, message: str) -> File:
        api = self._api_factory(file.repository_owner, file.repository_name)
        changes = [
            TreeEntry(
                path=CODEOWNERS_PATH,
                content=file.ruleset.sorted_copy().compile().decode(),
            )
        ]
        result = create_commit(
            api, self._commit_options(file, message, changes), cancel=self.cancel
        )
        LOG.debug(f"{file.id} written in {result.commit_sha}")

        current = self.read(file)
        if current is None:
            raise NotFoundError(
                f"{CODEOWNERS_PATH} for {file.id} is missing after merging "
                f"PR #{result.pull_request_number}"
            )
        return current

    def delete(self, file: File) -> None:
        """
        Remove the file. Deleting a file that doesn't exist is a no-op.
        """
        try:
            api = self._api_factory(file.repository_owner, file.repository_name)
            content = api.get_file(CODEOWNERS_PATH, ref=file.branch or None)
        except NotFoundError:
            LOG.debug(f"{CODEOWNERS_PATH} already absent for {file.id}")
            return

        changes = [TreeEntry(path=content.path, content=None)]
        create_commit(
            api,
            self._commit_options(file, "Deleting CODEOWNERS file", changes),
            cancel=self.cancel,
        )

    def import_file(self, identity: str) -> File:
        file = File.from_id(identity)
        current = self.read(file)
        if current is None:
            raise NotFoundError(f"{CODEOWNERS_PATH} not found for {identity}")
        return current

    def plan(self, current: File | None, desired: File) -> list[RuleDiff]:
        """
        Per rule differences, keyed by pattern. Username changes that only
        differ in ordering or in the `@` prefix are not reported.

        A pattern repeated in a file is matched occurrence by occurrence,
        extra remote occurrences are reported as deletions.
        """
        current_rules: dict[str, list[list[str]]] = {}
        for rule in current.ruleset if current else []:
            current_rules.setdefault(rule.pattern, []).append(rule.usernames)

        diffs = []
        for i, rule in enumerate(desired.ruleset):
            occurrences = current_rules.get(rule.pattern)
            if not occurrences:
                diffs.append(
                    RuleDiff("add", rule.pattern, desired=list(rule.usernames))
                )
                continue
            current_usernames = occurrences.pop(0)
            if not usernames_diff_suppressed(
                desired.id,
                f"rules.{i}.usernames",
                current_usernames,
                rule.usernames,
                cache=self.diff_cache,
            ):
                diffs.append(
                    RuleDiff(
                        "change",
                        rule.pattern,
                        current=list(current_usernames),
                        desired=list(rule.usernames),
                    )
                )
        for pattern, occurrences in current_rules.items():
            for usernames in occurrences:
                diffs.append(RuleDiff("delete", pattern, current=list(usernames)))
        return diffs

    def reconcile(self, desired: File, dry_run: bool) -> bool:
        """
        Bring the remote file in line with desired.

        :return: True if a change was (or, in dry-run, would be) applied
        """
        current = self.read(desired)
        if current is None:
            LOG.info(["create_codeowners", desired.id])
            if not dry_run:
                self.create(desired)
            return True

        if current.ruleset.equal(desired.ruleset):
            LOG.debug(["codeowners_up_to_date", desired.id])
            return False

        for diff in self.plan(current, desired):
            LOG.info(
                [f"{diff.action}_rule", desired.id, diff.pattern, diff.desired]
            )
        LOG.info(["update_codeowners", desired.id])
        if not dry_run:
            self.update(desired)
        return True


def run(
    dry_run: bool,
    desired_state_file: str,
    thread_pool_size: int = 10,
    settings: GithubSettings | None = None,
) -> None:
    settings = settings or get_github_settings()
    desired_state = load_desired_state(desired_state_file)
    files = [File.from_desired(f) for f in desired_state.files]

    resource = CodeownersFileResource(settings, diff_cache=DiffResultCache())
    results = threaded.run(
        resource.reconcile,
        files,
        thread_pool_size,
        return_exceptions=True,
        dry_run=dry_run,
    )

    errors = []
    for file, result in zip(files, results):
        if isinstance(result, Exception):
            LOG.error(f"failed to reconcile {file.id}: {result}")
            errors.append(result)
    if errors:
        raise ExceptionGroup("Reconcile errors occurred", errors)
