import os
from typing import Any

import requests

GH_BASE_URL = os.environ.get("GITHUB_API", "https://api.github.com")


class RawGithubApi:
    """
    REST based GH interface

    Unfortunately this needs to be used because PyGithub does not
    support attaching a signature when creating a git commit
    """

    BASE_HEADERS = {"Accept": "application/vnd.github.v3+json"}

    def __init__(self, password: str, base_url: str = GH_BASE_URL, timeout: int = 60):
        self.password = password
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def headers(self, headers: dict[str, str] | None = None) -> dict[str, str]:
        if headers is None:
            headers = {}
        new_headers = headers.copy()
        new_headers.update(self.BASE_HEADERS)
        new_headers["Authorization"] = "token %s" % (self.password,)
        return new_headers

    def post(self, url: str, data: dict[str, Any]) -> requests.Response:
        res = requests.post(
            self.base_url + url,
            json=data,
            headers=self.headers(),
            timeout=self.timeout,
        )
        res.raise_for_status()
        return res

    def create_commit(self, owner: str, repo: str, data: dict[str, Any]) -> str:
        res = self.post(f"/repos/{owner}/{repo}/git/commits", data)
        return res.json()["sha"]
