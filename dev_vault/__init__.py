"""dev-vault: sync *-dev secrets between Google Cloud Secret Manager and local files."""

__version__ = "0.1.0"
