"""HTTP service that stores user accounts and serves them as protobuf messages."""

__version__ = "0.1.0"