import hashlib
from dataclasses import dataclass

SCOPE_CHAT_NOTIFY = "chat:notify"
SCOPE_NOTIFICATIONS_ADMIN = "notifications:admin"


@dataclass(slots=True)
class Principal:
    module_id: str
    scopes: set[str]
    actor_id: str | None = None

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()
