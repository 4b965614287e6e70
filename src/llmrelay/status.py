from enum import StrEnum


class RequestStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class RequestState(StrEnum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class RequestEvent(StrEnum):
    STARTED = "RequestStarted"
    STREAMING = "RequestStreaming"
    FINISHED = "RequestFinished"
