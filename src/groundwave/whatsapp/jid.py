"""WhatsApp addresses (JIDs).

A JID is ``user[.agent][:device]@server``. Phone-number addressed users
live on ``s.whatsapp.net`` (or the legacy ``c.us``); privacy-preserving
addresses use the hidden ``lid`` servers and carry no phone number.
"""

from __future__ import annotations

from dataclasses import dataclass

from groundwave.errors import ValidationError

DEFAULT_USER_SERVER = "s.whatsapp.net"
LEGACY_USER_SERVER = "c.us"
HIDDEN_USER_SERVER = "lid"
HOSTED_LID_SERVER = "hosted.lid"
GROUP_SERVER = "g.us"

PHONE_NUMBER_SERVERS = frozenset({DEFAULT_USER_SERVER, LEGACY_USER_SERVER})
HIDDEN_SERVERS = frozenset({HIDDEN_USER_SERVER, HOSTED_LID_SERVER})


@dataclass(frozen=True)
class JID:
    user: str = ""
    server: str = ""
    agent: int = 0
    device: int = 0

    @classmethod
    def parse(cls, raw: str) -> JID:
        """Parse a JID string.

        Raises:
            ValidationError: on too many dots, a non-numeric agent or device,
                or a missing server.
        """
        raw = raw.strip()
        if "@" not in raw:
            if not raw:
                raise ValidationError("empty JID")
            return cls(server=raw)

        user, server = raw.split("@", 1)
        if not server:
            raise ValidationError(f"JID has no server: {raw!r}")

        device = 0
        if ":" in user:
            user, raw_device = user.split(":", 1)
            if not raw_device.isdigit():
                raise ValidationError(f"invalid device in JID {raw!r}")
            device = int(raw_device)

        agent = 0
        dots = user.split(".")
        if len(dots) > 2:
            raise ValidationError(f"unexpected number of dots in JID {raw!r}")
        if len(dots) == 2:
            user, raw_agent = dots
            if not raw_agent.isdigit():
                raise ValidationError(f"invalid agent in JID {raw!r}")
            agent = int(raw_agent)

        return cls(user=user, server=server, agent=agent, device=device)

    def is_empty(self) -> bool:
        return not self.server

    def is_phone_number(self) -> bool:
        return bool(self.user) and self.server in PHONE_NUMBER_SERVERS

    def is_hidden(self) -> bool:
        return self.server in HIDDEN_SERVERS

    def is_group(self) -> bool:
        return self.server == GROUP_SERVER

    def to_non_ad(self) -> JID:
        """Drop the agent and device parts."""
        return JID(user=self.user, server=self.server)

    def __str__(self) -> str:
        if not self.user:
            return self.server
        user = self.user
        if self.agent:
            user = f"{user}.{self.agent}"
        if self.device:
            user = f"{user}:{self.device}"
        return f"{user}@{self.server}"


EMPTY_JID = JID()
