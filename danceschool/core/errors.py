class DanceSchoolError(Exception):
    """Base error carrying the HTTP status it maps to"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(DanceSchoolError):
    status_code = 404


class ForbiddenError(DanceSchoolError):
    status_code = 403


class ValidationError(DanceSchoolError):
    status_code = 400
