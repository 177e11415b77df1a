from aws_metadata_creds.aws import (
    AwsCredential,
    InvalidEnvironment,
    get_container_credentials,
    get_credentials,
    get_instance_credentials,
)
from aws_metadata_creds.client import (
    BodyConsumedError,
    BuildingRequestError,
    HttpClient,
    HttpError,
    InvalidUTF8Error,
    ParsingError,
    Request,
    RequestError,
    Response,
    TooManyRedirectsError,
    Transport,
    build_request,
)

__all__ = [
    "AwsCredential",
    "BodyConsumedError",
    "BuildingRequestError",
    "HttpClient",
    "HttpError",
    "InvalidEnvironment",
    "InvalidUTF8Error",
    "ParsingError",
    "Request",
    "RequestError",
    "Response",
    "TooManyRedirectsError",
    "Transport",
    "build_request",
    "get_container_credentials",
    "get_credentials",
    "get_instance_credentials",
]
