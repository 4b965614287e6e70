from .adapters import Adapter as Adapter
from .adapters import AdapterHandlers as AdapterHandlers
from .adapters import AdapterOpts as AdapterOpts
from .adapters import load_adapter as load_adapter
from .client import Client as Client
from .config import RelaySettings as RelaySettings
from .events import EventBus as EventBus
from .events import default_bus as default_bus
from .exceptions import RelayError as RelayError
from .exceptions import SetupError as SetupError
from .exceptions import TransportError as TransportError
from .models import Payload as Payload
from .models import RequestActions as RequestActions
from .models import RequestOptions as RequestOptions
from .status import RequestEvent as RequestEvent
from .status import RequestStatus as RequestStatus
from .transport import RequestHandle as RequestHandle
from .transport import Transport as Transport
from .transport import TransportResponse as TransportResponse

__all__ = [
    "Adapter",
    "AdapterHandlers",
    "AdapterOpts",
    "Client",
    "EventBus",
    "Payload",
    "RelayError",
    "RelaySettings",
    "RequestActions",
    "RequestEvent",
    "RequestHandle",
    "RequestOptions",
    "RequestStatus",
    "SetupError",
    "Transport",
    "TransportError",
    "TransportResponse",
    "default_bus",
    "load_adapter",
]
