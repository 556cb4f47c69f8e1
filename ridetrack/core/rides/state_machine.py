from ridetrack.common.constants import RideStatus


class RideStateMachine:
    ALLOWED_TRANSITIONS = {
        RideStatus.ACTIVE: [RideStatus.PAUSED, RideStatus.COMPLETED],
        RideStatus.PAUSED: [RideStatus.ACTIVE, RideStatus.COMPLETED],
        RideStatus.COMPLETED: [],
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = RideStatus(current_status)
            new = RideStatus(new_status)
            return new in RideStateMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False
