from exam_portal.utils.base.enums import BaseEnum, UserRole
from exam_portal.utils.base.errors import (
    Conflict,
    Forbidden,
    InvalidInput,
    InvalidState,
    NotFound,
    PortalError,
    Unavailable,
)
