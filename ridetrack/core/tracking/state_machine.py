from ridetrack.common.constants import TrackRequestStatus


class TrackRequestStateMachine:
    ALLOWED_TRANSITIONS = {
        TrackRequestStatus.PENDING: [
            TrackRequestStatus.APPROVED,
            TrackRequestStatus.REJECTED,
            TrackRequestStatus.CANCELLED,
            TrackRequestStatus.EXPIRED,
        ],
        TrackRequestStatus.APPROVED: [],
        TrackRequestStatus.REJECTED: [],
        TrackRequestStatus.CANCELLED: [],
        TrackRequestStatus.EXPIRED: [],
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = TrackRequestStatus(current_status)
            new = TrackRequestStatus(new_status)
            return new in TrackRequestStateMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False
