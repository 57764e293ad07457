from trust_radar.api.errors import (
    ErrorCode,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    QueryError,
)
