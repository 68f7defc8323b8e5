from enum import Enum
from typing import Dict, Optional, Tuple

from .errors import InvalidTransition
from .models import ListingStatus


class ListingAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    MARK_SOLD = "mark_sold"
    DELETE = "delete"
    ACCEPT_BID = "accept_bid"


# None means the listing leaves the system (a rejected submission is removed).
TRANSITIONS: Dict[Tuple[ListingStatus, ListingAction], Optional[ListingStatus]] = {
    (ListingStatus.PENDING, ListingAction.APPROVE): ListingStatus.ACTIVE,
    (ListingStatus.PENDING, ListingAction.REJECT): None,
    (ListingStatus.ACTIVE, ListingAction.MARK_SOLD): ListingStatus.SOLD,
    (ListingStatus.ACTIVE, ListingAction.DELETE): ListingStatus.DELETED,
    (ListingStatus.ACTIVE, ListingAction.ACCEPT_BID): ListingStatus.SOLD,
}


def next_status(current: ListingStatus, action: ListingAction) -> Optional[ListingStatus]:
    key = (ListingStatus(current), ListingAction(action))
    if key not in TRANSITIONS:
        status, act = key
        raise InvalidTransition(f"Cannot {act.value.replace('_', ' ')} a listing that is {status.value}")
    return TRANSITIONS[key]
