import yaml
from pydantic import (
    BaseModel,
    Field,
    model_validator,
)

from codeowners_reconcile.utils.ruleset import (
    Rule,
    Ruleset,
)


class RuleV1(BaseModel):
    pattern: str = Field(..., description="Pattern following gitignore rules")
    usernames: list[str] = Field(
        ...,
        description="Users or teams, the @ prefix is optional",
    )


class CodeownersFileV1(BaseModel):
    repository_owner: str = Field(..., description="e.g. my-org for my-org/my-repo")
    repository_name: str = Field(..., description="e.g. my-repo for my-org/my-repo")
    branch: str = Field(
        default="",
        description="Branch to control CODEOWNERS on, empty for the default branch",
    )
    rules: list[RuleV1] = Field(default_factory=list)

    def ruleset(self) -> Ruleset:
        return Ruleset(
            Rule(pattern=r.pattern, usernames=r.usernames) for r in self.rules
        ).sorted_copy()


class DesiredState(BaseModel):
    files: list[CodeownersFileV1] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_files(self) -> "DesiredState":
        # one entry per repository branch
        seen = set()
        for f in self.files:
            key = (f.repository_owner, f.repository_name, f.branch)
            if key in seen:
                raise ValueError(
                    f"duplicate CODEOWNERS file {f.repository_owner}/"
                    f"{f.repository_name}:{f.branch}"
                )
            seen.add(key)
        return self


def load_desired_state(path: str) -> DesiredState:
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return DesiredState.model_validate(raw)
