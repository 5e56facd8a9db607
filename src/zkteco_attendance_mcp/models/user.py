"""Enrolled user model."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A user enumerated from the device during one ``list_users`` call.

    ``uid`` is the 1-based arrival rank within the streamed reply, not an
    index stored on the device.
    """

    uid: int
    name: str
    external_id: str = field(default="")

    def __post_init__(self) -> None:
        if not self.external_id:
            self.external_id = str(self.uid)

    def to_dict(self) -> dict:
        return {"uid": self.uid, "name": self.name, "user_id": self.external_id}
