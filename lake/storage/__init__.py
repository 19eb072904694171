from .abc import ObjectStoreAPI  # noqa: F401
from .s3 import S3ObjectStore, classify_client_error  # noqa: F401
