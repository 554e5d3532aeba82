from __future__ import annotations

from alertmon.utils.types import PermissionStatus

class StaticPermission:
    """
    Permission gate for hosts with no interactive prompt (servers, bots).
    `request()` resolves a "default" status to `answer`.
    """
    def __init__(self, status: PermissionStatus = "granted", answer: PermissionStatus = "granted"):
        self._status = status
        self._answer = answer
        self.requests = 0

    def status(self) -> PermissionStatus:
        return self._status

    async def request(self) -> PermissionStatus:
        self.requests += 1
        if self._status == "default":
            self._status = self._answer
        return self._status
