"""Release artifact store for deployment revisions."""

import logging

import aws_cdk as cdk
from aws_cdk import aws_iam as iam
from aws_cdk import aws_s3 as s3
from cdk_nag import NagSuppressions
from constructs import Construct

from stacks.compute.fleet import ComputeFleet
from stacks.configs.topology_config import ArtifactEncryption, ArtifactStoreConfig
from stacks.control.artifact_access import PUBLIC_CANNED_ACLS

logger = logging.getLogger(__name__)

BUCKET_ENCRYPTION: dict[ArtifactEncryption, s3.BucketEncryption] = {
    ArtifactEncryption.KMS_MANAGED: s3.BucketEncryption.KMS_MANAGED,
    ArtifactEncryption.S3_MANAGED: s3.BucketEncryption.S3_MANAGED,
}


class ArtifactLifecyclePolicies:
    """Lifecycle policies for release artifacts."""

    @staticmethod
    def superseded_revisions(retain_days: int = 30) -> list[s3.LifecycleRule]:
        """Expire superseded object versions and abandoned uploads."""
        return [
            s3.LifecycleRule(
                id="SupersededRevisionsCleanup",
                enabled=True,
                noncurrent_version_expiration=cdk.Duration.days(retain_days),
                abort_incomplete_multipart_upload_after=cdk.Duration.days(7),
            ),
        ]


class ReleaseArtifactStore(Construct):
    """Private, encrypted bucket holding deployment revisions.

    Requests over unencrypted transport are denied, public access is blocked
    at every level and objects can never be made public through a canned ACL.
    The CI role may read and write; the compute fleet may only read.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: ArtifactStoreConfig,
    ) -> None:
        """Initialize the artifact store.

        Args:
            scope: CDK construct scope
            construct_id: Construct identifier
            config: Artifact store configuration
        """
        super().__init__(scope, construct_id)

        if config.retain_on_teardown:
            removal_props = {"removal_policy": cdk.RemovalPolicy.RETAIN}
        else:
            removal_props = {
                "removal_policy": cdk.RemovalPolicy.DESTROY,
                "auto_delete_objects": True,
            }

        self.bucket = s3.Bucket(
            self,
            "DeploymentBucket",
            encryption=BUCKET_ENCRYPTION[config.encryption],
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            versioned=config.versioned,
            object_ownership=s3.ObjectOwnership.BUCKET_OWNER_ENFORCED,
            lifecycle_rules=ArtifactLifecyclePolicies.superseded_revisions(
                config.noncurrent_version_expiration_days,
            ),
            **removal_props,
        )

        self._add_public_acl_denial_policy()

        NagSuppressions.add_resource_suppressions(
            self.bucket,
            [
                {
                    "id": "AwsSolutions-S1",
                    "reason": "Artifact access is limited to two roles; object-level "
                    "activity is captured by CloudTrail data events.",
                },
            ],
        )

        logger.info(
            "Release artifact store: %s encryption, versioned=%s, retained on teardown=%s",
            config.encryption.value,
            config.versioned,
            config.retain_on_teardown,
        )

    @property
    def bucket_name(self) -> str:
        """Get bucket name."""
        return self.bucket.bucket_name

    @property
    def bucket_arn(self) -> str:
        """Get bucket ARN."""
        return self.bucket.bucket_arn

    def grant_release_access(self, role: iam.IGrantable) -> iam.Grant:
        """Allow CI to upload and read release artifacts."""
        return self.bucket.grant_read_write(role)

    def grant_fleet_access(self, fleet: ComputeFleet) -> iam.Grant:
        """Allow fleet members to download release artifacts."""
        return self.bucket.grant_read(fleet.auto_scaling_group)

    def _add_public_acl_denial_policy(self) -> None:
        """Add policy that rejects uploads and ACL changes with public canned ACLs."""
        self.bucket.add_to_resource_policy(
            iam.PolicyStatement(
                sid="DenyPublicObjectAcls",
                effect=iam.Effect.DENY,
                principals=[iam.AnyPrincipal()],
                actions=["s3:PutObject", "s3:PutObjectAcl"],
                resources=[f"{self.bucket.bucket_arn}/*"],
                conditions={
                    "StringEquals": {
                        "s3:x-amz-acl": list(PUBLIC_CANNED_ACLS),
                    },
                },
            ),
        )
