import os
import re
import tempfile
from subprocess import (
    PIPE,
    STDOUT,
    CompletedProcess,
    run,
)

from codeowners_reconcile.utils.exceptions import (
    DecryptionFailedError,
    InvalidKeyError,
    SigningFailedError,
)

PASSPHRASE_STATUS = ("BAD_PASSPHRASE", "MISSING_PASSPHRASE", "Bad passphrase")

# libgpg-error codes, reported in the low 16 bits of `FAILURE sign <code>`
GPG_ERR_BAD_PASSPHRASE = 11
GPG_ERR_NO_PASSPHRASE = 177
PASSPHRASE_ERRORS = (GPG_ERR_BAD_PASSPHRASE, GPG_ERR_NO_PASSPHRASE)

FAILURE_RE = re.compile(r"^\[GNUPG:\] FAILURE \S+ (\d+)$", re.MULTILINE)


def commit_payload(
    tree_sha: str,
    parent_sha: str,
    name: str,
    email: str,
    timestamp: int,
    message: str,
) -> str:
    """
    The commit object as git writes it to the object database. GitHub
    verifies signatures against exactly this byte sequence.
    """
    return (
        f"tree {tree_sha}\n"
        f"parent {parent_sha}\n"
        f"author {name} <{email}> {timestamp} +0000\n"
        f"committer {name} <{email}> {timestamp} +0000\n"
        "\n"
        f"{message}"
    )


def _gpg(
    gnupg_home_dir: str, args: list[str], data: bytes, merge_stderr: bool = True
) -> CompletedProcess:
    cmd = [
        "gpg",
        "--homedir",
        gnupg_home_dir,
        "--batch",
        "--pinentry-mode",
        "loopback",
        "--passphrase-file",
        os.path.join(gnupg_home_dir, "passphrase"),
        *args,
    ]
    try:
        return run(
            cmd,
            input=data,
            stdout=PIPE,
            stderr=STDOUT if merge_stderr else PIPE,
            check=False,
        )
    except OSError as e:
        raise SigningFailedError(e) from e


def gpg_sign(payload: str, private_key: str, passphrase: str = "") -> str:
    """
    Create an ASCII-armored detached signature of payload.

    The key is imported into a throw-away GnuPG home directory, so the
    caller's keyring is never touched.

    :raises InvalidKeyError: the key can't be imported or has no secret part
    :raises DecryptionFailedError: the passphrase doesn't unlock the key
    :raises SigningFailedError: any other gpg failure
    """
    with tempfile.TemporaryDirectory() as gnupg_home_dir:
        passphrase_file = os.path.join(gnupg_home_dir, "passphrase")
        with open(passphrase_file, "w", encoding="utf-8") as f:
            f.write(passphrase)

        proc = _gpg(gnupg_home_dir, ["--import"], private_key.encode())
        if proc.returncode != 0:
            raise InvalidKeyError(proc.stdout.decode("utf-8").strip())

        proc = _gpg(
            gnupg_home_dir,
            ["--list-secret-keys", "--with-colons"],
            b"",
        )
        if not any(
            line.startswith("sec:")
            for line in proc.stdout.decode("utf-8").splitlines()
        ):
            raise InvalidKeyError("no secret key found in key material")

        proc = _gpg(
            gnupg_home_dir,
            ["--yes", "--status-fd", "2", "--armor", "--detach-sign"],
            payload.encode(),
            merge_stderr=False,
        )
        if proc.returncode != 0:
            status = proc.stderr.decode("utf-8")
            if passphrase_rejected(status):
                raise DecryptionFailedError("wrong or missing passphrase")
            raise SigningFailedError(status.strip())
        signature = proc.stdout
    return signature.decode("utf-8")


def passphrase_rejected(status: str) -> bool:
    """
    True when the gpg status output of a failed signing says the key
    could not be unlocked.
    """
    for code in FAILURE_RE.findall(status):
        if (int(code) & 0xFFFF) in PASSPHRASE_ERRORS:
            return True
    return any(s in status for s in PASSPHRASE_STATUS)


def check_key(private_key: str, passphrase: str = "") -> None:
    """
    Make sure the key can be imported and unlocked by signing an empty
    payload, without any side effect outside a throw-away home directory.
    """
    gpg_sign("", private_key, passphrase)
