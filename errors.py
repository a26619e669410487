class MigrationError(Exception):
    """Base class for everything the migrator raises or reports"""


class ConfigurationError(MigrationError):
    pass


class SchemaIntrospectionFailure(MigrationError):
    pass


class InvalidLinkFormat(MigrationError):
    pass


class UnsupportedExtension(MigrationError):
    pass


class PersistenceError(MigrationError):
    pass


class _HTTPFailure(MigrationError):
    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status

    @property
    def rate_limited(self):
        return self.status == 429


class DownloadFailed(_HTTPFailure):
    pass


class UploadFailed(_HTTPFailure):
    pass
