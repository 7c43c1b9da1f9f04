"""Maps approval levels to the role allowed to act on them."""

from app.config import WORKFLOW_APPROVAL_CHAIN


def _norm(role: str) -> str:
    return " ".join(str(role or "").split()).casefold()


class RoleAuthority:
    def __init__(self, chain: list[str] | None = None):
        chain = list(chain if chain is not None else WORKFLOW_APPROVAL_CHAIN)
        if not chain:
            raise ValueError("Approval chain must name at least one role")
        self.chain = chain

    @property
    def top_level(self) -> int:
        return len(self.chain)

    def role_for_level(self, level: int) -> str:
        if level < 1 or level > self.top_level:
            raise ValueError(f"Approval level {level} outside 1..{self.top_level}")
        return self.chain[level - 1]

    def is_authorized(self, role: str, level: int) -> bool:
        return _norm(role) == _norm(self.role_for_level(level))

    def levels_for_role(self, role: str) -> list[int]:
        return [i for i, r in enumerate(self.chain, start=1) if _norm(r) == _norm(role)]
