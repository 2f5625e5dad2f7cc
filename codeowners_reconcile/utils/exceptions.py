from typing import Any


class CodeownersError(Exception):
    pass


class GithubApiError(CodeownersError):
    def __init__(self, msg: Any, status: int | None = None) -> None:
        super().__init__(str(msg))
        self.status = status


class NotFoundError(GithubApiError):
    """
    The requested file, branch or repository does not exist.
    """


class TransientAPIFailure(GithubApiError):
    """
    A 5xx answer or a network level failure while talking to the API.
    """


class SigningError(CodeownersError):
    pass


class InvalidKeyError(SigningError):
    def __init__(self, msg: Any) -> None:
        super().__init__("invalid gpg private key: " + str(msg))


class DecryptionFailedError(SigningError):
    def __init__(self, msg: Any) -> None:
        super().__init__("unable to decrypt gpg private key: " + str(msg))


class SigningFailedError(SigningError):
    def __init__(self, msg: Any) -> None:
        super().__init__("unable to sign commit: " + str(msg))


class MergeFailedError(CodeownersError):
    def __init__(self, pull_request: int, status: int | None, msg: Any) -> None:
        if status is not None:
            super().__init__(
                f"failed to merge PR #{pull_request}: HTTP {status}: {msg}"
            )
        else:
            super().__init__(f"failed to merge PR #{pull_request}: {msg}")
        self.pull_request = pull_request
        self.status = status


class ApplyCancelledError(CodeownersError):
    pass
