from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional

import boto3
from pydantic import BaseModel, ConfigDict, Field, field_validator

from aws_metadata_creds.client import HttpClient

logger = logging.getLogger(__name__)

ECS_CONTAINER_METADATA_URI = "http://169.254.170.2"
EC2_INSTANCE_METADATA_URI = "http://169.254.169.254"
EC2_TOKEN_URI = f"{EC2_INSTANCE_METADATA_URI}/latest/api/token"
EC2_ROLE_NAME_URI = f"{EC2_INSTANCE_METADATA_URI}/latest/meta-data/iam/security-credentials/"

EC2_TOKEN_HEADER = "X-aws-ec2-metadata-token"
EC2_TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
EC2_TOKEN_TTL_SECONDS = 30

RELATIVE_URI_ENV = "AWS_CONTAINER_CREDENTIALS_RELATIVE_URI"


class InvalidEnvironment(Exception):
    pass


class AwsCredential(BaseModel):
    """Temporary credentials as served by the ECS and EC2 metadata services."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    access_key: str = Field(alias="AccessKeyId")
    secret_key: str = Field(alias="SecretAccessKey")
    session_token: Optional[str] = Field(default=None, alias="Token")
    expiration: Optional[datetime] = Field(default=None, alias="Expiration")

    @field_validator("session_token")
    @classmethod
    def _empty_token_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("expiration")
    @classmethod
    def _naive_expiration_is_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def expired(self) -> bool:
        return bool(self.expiration and self.expiration < datetime.now(tz=timezone.utc))

    def boto3_session(self, region_name: str | None = None) -> boto3.Session:
        return boto3.Session(
            region_name=region_name,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            aws_session_token=self.session_token,
        )


async def get_container_credentials(
    client: HttpClient | None = None,
    relative_uri: str | None = None,
) -> AwsCredential:
    """Fetches the ECS task role credentials provided by the metadata service"""
    if not (relative_uri := relative_uri or os.environ.get(RELATIVE_URI_ENV)):
        raise InvalidEnvironment(
            f"{RELATIVE_URI_ENV} not defined. This may not be an ECS container."
        )

    client = client or HttpClient()
    uri = f"{ECS_CONTAINER_METADATA_URI}/{relative_uri.lstrip('/')}"
    logger.debug(f"Requesting container credentials from {uri}")
    return await client.get_and_deserialize_json(uri, AwsCredential)


async def get_instance_credentials(client: HttpClient | None = None) -> AwsCredential:
    """Fetches the EC2 instance role credentials using an IMDSv2 session token"""
    client = client or HttpClient()

    token = await client.put_and_read_string(
        EC2_TOKEN_URI, [(EC2_TOKEN_TTL_HEADER, str(EC2_TOKEN_TTL_SECONDS))]
    )
    headers = [(EC2_TOKEN_HEADER, token)]

    role_name = (await client.get_and_read_string(EC2_ROLE_NAME_URI, headers)).strip()
    if not role_name:
        raise InvalidEnvironment("No IAM role is attached to this instance.")

    logger.debug(f"Requesting instance credentials for role {role_name}")
    # EC2_ROLE_NAME_URI ends with a slash, so none is added before the role
    return await client.get_and_deserialize_json(
        f"{EC2_ROLE_NAME_URI}{role_name}", AwsCredential, headers
    )


async def get_credentials(client: HttpClient | None = None) -> AwsCredential:
    """Uses the container endpoint inside ECS and the instance endpoint everywhere else"""
    client = client or HttpClient()

    if os.environ.get(RELATIVE_URI_ENV):
        return await get_container_credentials(client)

    return await get_instance_credentials(client)
