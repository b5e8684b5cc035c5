class StudyError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(StudyError):
    """The completion provider credential is missing."""


class ProviderError(StudyError):
    """The completion provider failed or returned something unusable."""


class ValidationError(StudyError):
    status_code = 400
