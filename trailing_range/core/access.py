from __future__ import annotations

import threading
from enum import StrEnum

from eth_utils import is_address, to_checksum_address
from loguru import logger

from trailing_range.core.errors import AccessDenied, SystemPaused, ValidationError
from trailing_range.core.events import EventBus, SystemPauseChanged


class Role(StrEnum):
    ADMIN = "ADMIN"
    YIELD_UPDATER = "YIELD_UPDATER"
    BRIDGE_CALLER = "BRIDGE_CALLER"


def normalize_address(address: str, *, field: str = "address") -> str:
    if not isinstance(address, str) or not is_address(address):
        raise ValidationError(f"invalid {field}: {address!r}", field=field)
    return to_checksum_address(address)


class AccessControl:
    def __init__(self, owner: str, *, events: EventBus | None = None) -> None:
        self._lock = threading.Lock()
        self._grants: dict[Role, set[str]] = {role: set() for role in Role}
        self.owner = normalize_address(owner, field="owner")
        self._grants[Role.ADMIN].add(self.owner)
        self.events = events
        self.logger = logger.bind(component="AccessControl")

    def has_role(self, caller: str, role: Role) -> bool:
        try:
            who = normalize_address(caller, field="caller")
        except ValidationError:
            return False
        with self._lock:
            return who in self._grants[role]

    def require(self, caller: str, role: Role) -> str:
        if not self.has_role(caller, role):
            self.logger.warning(f"{caller} denied: missing role {role}")
            raise AccessDenied(f"caller lacks {role} role", caller=caller, role=str(role))
        return to_checksum_address(caller)

    def grant(self, caller: str, role: Role, account: str) -> None:
        self.require(caller, Role.ADMIN)
        who = normalize_address(account, field="account")
        with self._lock:
            self._grants[role].add(who)
        self.logger.info(f"Granted {role} to {who}")

    def revoke(self, caller: str, role: Role, account: str) -> None:
        self.require(caller, Role.ADMIN)
        who = normalize_address(account, field="account")
        if role is Role.ADMIN and who == self.owner:
            raise ValidationError("owner cannot lose the admin role", account=who)
        with self._lock:
            self._grants[role].discard(who)
        self.logger.info(f"Revoked {role} from {who}")

    def members(self, role: Role) -> list[str]:
        with self._lock:
            return sorted(self._grants[role])


class PauseSwitch:
    """System-wide pause gate checked first by every mutating entry point."""

    def __init__(self, access: AccessControl, *, events: EventBus | None = None) -> None:
        self._access = access
        self._paused = False
        self._lock = threading.Lock()
        self.events = events
        self.logger = logger.bind(component="PauseSwitch")

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    def ensure_not_paused(self, operation: str) -> None:
        if self.paused:
            self.logger.warning(f"Rejected {operation}: system paused")
            raise SystemPaused(operation)

    def pause(self, caller: str) -> None:
        self._set(caller, True)

    def unpause(self, caller: str) -> None:
        self._set(caller, False)

    def _set(self, caller: str, value: bool) -> None:
        who = self._access.require(caller, Role.ADMIN)
        with self._lock:
            changed = self._paused != value
            self._paused = value
        if changed:
            self.logger.info(f"System {'paused' if value else 'unpaused'} by {who}")
            if self.events is not None:
                self.events.publish(SystemPauseChanged(paused=value, by=who))
