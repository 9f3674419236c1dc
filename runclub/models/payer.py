from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class MemberPayer:
    """A registered club member paying for their own registration."""
    id: str


@dataclass(frozen=True)
class GuestPayer:
    """A guest attendee without a member account."""
    id: str


Payer = Union[MemberPayer, GuestPayer]


def payer_from_ids(member_id: Optional[str], attendee_id: Optional[str]) -> Payer:
    """Build a payer from the two exclusive id columns. Exactly one must be set."""
    if member_id and attendee_id:
        raise ValueError("A payment belongs to a member or a guest, not both")
    if member_id:
        return MemberPayer(member_id)
    if attendee_id:
        return GuestPayer(attendee_id)
    raise ValueError("A payment must belong to a member or a guest")
