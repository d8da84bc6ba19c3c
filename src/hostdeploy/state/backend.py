"""S3 + DynamoDB remote state backend bootstrap."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from hostdeploy.core.exceptions import BackendUnreachableError, PreconditionError

logger = structlog.get_logger()

_BACKEND_SETTING_RE = re.compile(r'^\s*(bucket|dynamodb_table|region)\s*=\s*"([^"]*)"')

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


@dataclass(frozen=True)
class BackendConfig:
    """Where the shared state and its lock table live."""

    bucket: str
    table: str
    region: str

    @classmethod
    def from_backend_file(cls, path: Path, default_region: Optional[str] = None) -> "BackendConfig":
        """Read bucket, lock table and region from a terraform ``backend.tf``.

        The first uncommented assignment of each key wins.

        Raises:
            PreconditionError: If the file is missing or lacks bucket or table.
        """
        if not path.is_file():
            raise PreconditionError(f"Backend configuration not found: {path}", missing=[str(path)])

        values: Dict[str, str] = {}
        for line in path.read_text(encoding="utf-8").splitlines():
            stripped = line.strip()
            if stripped.startswith("#") or stripped.startswith("//"):
                continue
            match = _BACKEND_SETTING_RE.match(line)
            if match and match.group(1) not in values:
                values[match.group(1)] = match.group(2)

        bucket = values.get("bucket", "")
        table = values.get("dynamodb_table", "")
        region = values.get("region") or default_region or "us-east-1"
        if not bucket or not table:
            raise PreconditionError(
                "Could not parse backend configuration from backend.tf",
                missing=[k for k, v in (("bucket", bucket), ("dynamodb_table", table)) if not v],
            )
        return cls(bucket=bucket, table=table, region=region)


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class StateBackend:
    """Creates the state bucket and lock table when they are absent.

    Both operations check first and tolerate losing a creation race.
    """

    def __init__(self, config: BackendConfig, s3_client: Any = None, dynamodb_client: Any = None):
        self.config = config
        self.s3 = s3_client or boto3.client("s3", region_name=config.region)
        self.dynamodb = dynamodb_client or boto3.client("dynamodb", region_name=config.region)

    def bootstrap(self) -> Dict[str, bool]:
        """Ensure both backend objects exist; report which ones were created."""
        logger.info(
            "Backend",
            bucket=self.config.bucket,
            table=self.config.table,
            region=self.config.region,
        )
        try:
            return {
                "bucket_created": self.ensure_bucket(),
                "table_created": self.ensure_lock_table(),
            }
        except (BotoCoreError, ClientError) as e:
            raise BackendUnreachableError(f"State backend unreachable: {e}", diagnostics=str(e)) from e

    def _bucket_exists(self) -> bool:
        try:
            self.s3.head_bucket(Bucket=self.config.bucket)
            return True
        except ClientError as e:
            if _error_code(e) in _MISSING_BUCKET_CODES:
                return False
            raise BackendUnreachableError(
                f"Cannot access state bucket {self.config.bucket}: {_error_code(e)}",
                diagnostics=str(e),
            ) from e

    def ensure_bucket(self) -> bool:
        if self._bucket_exists():
            logger.info("S3 bucket exists ✓")
            return False

        logger.warning("Creating S3 bucket...", bucket=self.config.bucket)
        create_args: Dict[str, Any] = {"Bucket": self.config.bucket}
        # us-east-1 rejects an explicit LocationConstraint
        if self.config.region != "us-east-1":
            create_args["CreateBucketConfiguration"] = {"LocationConstraint": self.config.region}

        created = True
        try:
            self.s3.create_bucket(**create_args)
        except ClientError as e:
            if _error_code(e) != "BucketAlreadyOwnedByYou":
                raise BackendUnreachableError(
                    f"Failed to create state bucket {self.config.bucket}: {_error_code(e)}",
                    diagnostics=str(e),
                ) from e
            created = False

        self.s3.put_bucket_versioning(
            Bucket=self.config.bucket,
            VersioningConfiguration={"Status": "Enabled"},
        )
        logger.info("S3 bucket created ✓")
        return created

    def _table_exists(self) -> bool:
        try:
            self.dynamodb.describe_table(TableName=self.config.table)
            return True
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return False
            raise BackendUnreachableError(
                f"Cannot access lock table {self.config.table}: {_error_code(e)}",
                diagnostics=str(e),
            ) from e

    def ensure_lock_table(self) -> bool:
        if self._table_exists():
            logger.info("DynamoDB table exists ✓")
            return False

        logger.warning("Creating DynamoDB table...", table=self.config.table)
        created = True
        try:
            self.dynamodb.create_table(
                TableName=self.config.table,
                AttributeDefinitions=[{"AttributeName": "LockID", "AttributeType": "S"}],
                KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
                ProvisionedThroughput={"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
            )
        except ClientError as e:
            if _error_code(e) != "ResourceInUseException":
                raise BackendUnreachableError(
                    f"Failed to create lock table {self.config.table}: {_error_code(e)}",
                    diagnostics=str(e),
                ) from e
            created = False

        self.dynamodb.get_waiter("table_exists").wait(TableName=self.config.table)
        logger.info("DynamoDB table created ✓")
        return created
