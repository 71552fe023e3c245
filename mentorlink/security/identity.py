"""
Authenticated user

Built once per WebSocket handshake or HTTP request from the identity
provider's user record and the resolved role.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class AuthenticatedUser:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None

    def author(self) -> Dict[str, Any]:
        """Author block attached to chat and run results."""
        return {"id": self.id, "name": self.name}
