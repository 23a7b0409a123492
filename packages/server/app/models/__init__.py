# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .check_in_request import CheckInRequest  # noqa: F401
from .document import Document  # noqa: F401
from .fulfiller_location import FulfillerLocation  # noqa: F401
