from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class UserInfo:
    """Authenticated identity supplied by the auth collaborator"""
    id: str
    display_name: str = ""
    avatar: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "display_name": self.display_name, "avatar": self.avatar}
