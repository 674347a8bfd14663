"""
Error taxonomy shared by the calculation engine, storage and routers.

NotFoundError    -> referenced scheme / marks record does not exist (404)
ValidationError  -> malformed input row or record (400)
DependencyError  -> storage read/write failure (503)
"""

from typing import Any


class GradeflowError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(GradeflowError):
    status_code = 404


class ValidationError(GradeflowError):
    status_code = 400


class DependencyError(GradeflowError):
    status_code = 503
