import enum

# -------------------------------------------------------------- #
# Constructor Types
# -------------------------------------------------------------- #


class ServerManagerType(enum.Enum):
    """Which set of external collaborators to wire into the application."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
