from collections import Counter
from collections.abc import Iterable
from dataclasses import (
    dataclass,
    field,
)


def normalize_username(username: str) -> str:
    return username.removeprefix("@")


@dataclass
class Rule:
    """
    A single CODEOWNERS line: a gitignore-style pattern and its owners.

    Usernames are kept without the leading `@`, which is added back
    when the rule is compiled.
    """

    pattern: str
    usernames: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        # build a new list, the caller keeps ownership of the one passed in
        self.usernames = [normalize_username(u) for u in self.usernames]

    def key(self) -> tuple[str, tuple[str, ...]]:
        return self.pattern, tuple(sorted(self.usernames))

    def compile(self) -> str:
        return " ".join([self.pattern] + [f"@{u}" for u in self.usernames])


class Ruleset(list[Rule]):
    """
    Ordered collection of rules making up one CODEOWNERS file.

    Order matters for the compiled output only, equality ignores both
    the rule order and the order of usernames within a rule.
    """

    def equal(self, other: Iterable[Rule]) -> bool:
        return Counter(r.key() for r in self) == Counter(r.key() for r in other)

    def compile(self) -> bytes:
        return "".join(f"{rule.compile()}\n" for rule in self).encode()

    def sorted_copy(self) -> "Ruleset":
        return Ruleset(Rule(r.pattern, sorted(r.usernames)) for r in self)

    @classmethod
    def parse(cls, text: str) -> "Ruleset":
        ruleset = cls()
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            pattern, *usernames = line.split()
            ruleset.append(Rule(pattern=pattern, usernames=usernames))
        return ruleset
