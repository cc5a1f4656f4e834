"""
EC2 instance for restoring database backups.

The instance runs next to an Aurora/RDS cluster, reads dumps from one backup
bucket and the database password from one SSM parameter. Inputs are
validated before anything touches AWS; build_plan() renders the full
resource set without network calls, and BackupInstanceManager applies or
destroys exactly that set.
"""
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError, WaiterError
from pydantic import BaseModel, Field, field_validator

from somleng_deploy.aws.utils import (
    error_code,
    get_ec2_client,
    get_iam_client,
    get_rds_client,
    get_ssm_client,
    get_sts_client,
)
from somleng_deploy.exceptions import ProvisioningError

logger = logging.getLogger(__name__)

ALLOWED_INSTANCE_PREFIXES = ("t3.", "t4g.")
ARM_INSTANCE_PREFIXES = ("t4g.",)

SSM_CORE_POLICY_ARN = "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore"
AMI_PARAMETER_TEMPLATE = "/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-{arch}"
ACCOUNT_PLACEHOLDER = "<account-id>"

EC2_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ec2.amazonaws.com"},
            "Action": "sts:AssumeRole"
        }
    ]
}


class BackupInstanceInputs(BaseModel):
    """Inputs of the backup instance. The first six fields are required."""
    region: str = Field(..., min_length=1, description="AWS region")
    instance_type: str = Field(..., description="EC2 instance type (t3.* or t4g.*)")
    backup_enabled: bool = Field(..., description="Restore the latest backup when the instance boots")
    database_name: str = Field(..., min_length=1, description="Database to restore into")
    cluster_identifier: str = Field(..., min_length=1, description="RDS/Aurora cluster identifier")
    password_parameter: str = Field(..., min_length=1, description="SSM parameter name or ARN holding the DB password")
    additional_security_group_id: Optional[str] = Field(None, description="Extra security group allowed to reach the instance")
    backup_bucket_name: Optional[str] = Field(None, description="Bucket holding the dumps (default: <cluster>-backups)")
    database_user: str = Field("postgres", min_length=1, description="Database user used for the restore")
    app_name: str = Field("somleng", min_length=1, description="Prefix for resource names and tags")

    @field_validator('instance_type')
    def validate_instance_type(cls, v):
        if not v.startswith(ALLOWED_INSTANCE_PREFIXES):
            raise ValueError(
                f"Invalid instance_type: {v}. Must start with one of {list(ALLOWED_INSTANCE_PREFIXES)}"
            )
        return v

    @field_validator('additional_security_group_id', 'backup_bucket_name')
    def blank_to_none(cls, v):
        return v or None

    @property
    def architecture(self) -> str:
        return "arm64" if self.instance_type.startswith(ARM_INSTANCE_PREFIXES) else "x86_64"

    @property
    def bucket(self) -> str:
        return self.backup_bucket_name or f"{self.cluster_identifier}-backups"

    @property
    def name_prefix(self) -> str:
        return f"{self.app_name}-{self.cluster_identifier}-db-backup"

    @property
    def role_name(self) -> str:
        return f"{self.name_prefix}-role"

    @property
    def instance_profile_name(self) -> str:
        return f"{self.name_prefix}-instance-profile"

    @property
    def security_group_name(self) -> str:
        return f"{self.name_prefix}-sg"

    @property
    def instance_name(self) -> str:
        return f"{self.name_prefix}-instance"

    @property
    def ami_parameter(self) -> str:
        return AMI_PARAMETER_TEMPLATE.format(arch=self.architecture)

    def password_parameter_arn(self, account_id: str) -> str:
        if self.password_parameter.startswith("arn:"):
            return self.password_parameter
        name = self.password_parameter.lstrip("/")
        return f"arn:aws:ssm:{self.region}:{account_id}:parameter/{name}"

    def tags(self, name: str) -> List[Dict[str, str]]:
        return [
            {'Key': 'Name', 'Value': name},
            {'Key': 'Project', 'Value': self.app_name},
            {'Key': 'Purpose', 'Value': 'Database-Backup'},
            {'Key': 'Cluster', 'Value': self.cluster_identifier},
        ]


def access_policy(inputs: BackupInstanceInputs, account_id: str) -> Dict[str, Any]:
    """Least-privilege inline policy: read the bucket, read the password parameter."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "ListBackupBucket",
                "Effect": "Allow",
                "Action": ["s3:ListBucket"],
                "Resource": [f"arn:aws:s3:::{inputs.bucket}"]
            },
            {
                "Sid": "ReadBackups",
                "Effect": "Allow",
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{inputs.bucket}/*"]
            },
            {
                "Sid": "ReadDatabasePassword",
                "Effect": "Allow",
                "Action": ["ssm:GetParameter"],
                "Resource": [inputs.password_parameter_arn(account_id)]
            }
        ]
    }


def render_user_data(inputs: BackupInstanceInputs, db_host: str = "${db_host}", db_port: int = 5432) -> str:
    """Boot script: install the restore helper and, when enabled, run it once."""
    run_restore = "/usr/local/bin/restore-latest-backup" if inputs.backup_enabled \
        else "echo 'Backup restore disabled; run /usr/local/bin/restore-latest-backup manually'"

    return f"""#!/bin/bash
set -euo pipefail

dnf install -y postgresql16

cat > /etc/db-backup.env <<EOF
AWS_REGION={inputs.region}
DB_HOST={db_host}
DB_PORT={db_port}
DB_NAME={inputs.database_name}
DB_USER={inputs.database_user}
DB_PASSWORD_PARAMETER={inputs.password_parameter}
BACKUP_BUCKET={inputs.bucket}
EOF

cat > /usr/local/bin/restore-latest-backup <<'SCRIPT'
#!/bin/bash
set -euo pipefail
source /etc/db-backup.env
export PGPASSWORD=$(aws ssm get-parameter --region "$AWS_REGION" --name "$DB_PASSWORD_PARAMETER" \\
  --with-decryption --query Parameter.Value --output text)
LATEST=$(aws s3 ls "s3://$BACKUP_BUCKET/" --region "$AWS_REGION" | sort | tail -n 1 | awk '{{print $4}}')
if [ -z "$LATEST" ]; then
  echo "No backups found in s3://$BACKUP_BUCKET" >&2
  exit 1
fi
aws s3 cp "s3://$BACKUP_BUCKET/$LATEST" /tmp/latest.dump --region "$AWS_REGION"
pg_restore --clean --if-exists --no-owner -h "$DB_HOST" -p "$DB_PORT" -U "$DB_USER" -d "$DB_NAME" /tmp/latest.dump
rm -f /tmp/latest.dump
SCRIPT
chmod +x /usr/local/bin/restore-latest-backup

{run_restore}
"""


@dataclass
class PlannedResource:
    address: str
    resource_type: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    count: int = 1


@dataclass
class BackupInstancePlan:
    resources: List[PlannedResource] = field(default_factory=list)

    def get(self, address: str) -> PlannedResource:
        for resource in self.resources:
            if resource.address == address:
                return resource
        raise KeyError(address)

    @property
    def active(self) -> List[PlannedResource]:
        return [r for r in self.resources if r.count > 0]

    def to_dict(self) -> Dict[str, Any]:
        return {'resources': [asdict(r) for r in self.resources]}


def build_plan(inputs: BackupInstanceInputs, account_id: str = ACCOUNT_PLACEHOLDER,
               database_security_group_ids: Optional[List[str]] = None) -> BackupInstancePlan:
    """Declarative description of every resource, with no AWS calls."""
    db_groups = database_security_group_ids or ["<database-security-group>"]
    additional = inputs.additional_security_group_id

    resources = [
        PlannedResource("aws_iam_role.backup", "iam_role", {
            'name': inputs.role_name,
            'assume_role_policy': EC2_TRUST_POLICY,
        }),
        PlannedResource("aws_iam_role_policy.backup_access", "iam_role_policy", {
            'role': inputs.role_name,
            'name': f"{inputs.name_prefix}-access",
            'policy': access_policy(inputs, account_id),
        }),
        PlannedResource("aws_iam_role_policy_attachment.ssm_core", "iam_role_policy_attachment", {
            'role': inputs.role_name,
            'policy_arn': SSM_CORE_POLICY_ARN,
        }),
        PlannedResource("aws_iam_instance_profile.backup", "iam_instance_profile", {
            'name': inputs.instance_profile_name,
            'role': inputs.role_name,
        }),
        PlannedResource("aws_security_group.backup", "security_group", {
            'name': inputs.security_group_name,
            'egress': [{'protocol': '-1', 'cidr': '0.0.0.0/0'}],
        }),
        PlannedResource("aws_security_group_rule.database_ingress", "security_group_rule", {
            'security_group': inputs.security_group_name,
            'protocol': '-1',
            'source_security_groups': db_groups,
        }),
        PlannedResource("aws_security_group_rule.additional_ingress", "security_group_rule", {
            'security_group': inputs.security_group_name,
            'protocol': '-1',
            'source_security_groups': [additional] if additional else [],
        }, count=1 if additional else 0),
        PlannedResource("aws_instance.backup", "instance", {
            'name': inputs.instance_name,
            'instance_type': inputs.instance_type,
            'architecture': inputs.architecture,
            'ami': f"resolve:ssm:{inputs.ami_parameter}",
            'iam_instance_profile': inputs.instance_profile_name,
            'security_groups': [inputs.security_group_name],
            'backup_enabled': inputs.backup_enabled,
            'user_data': render_user_data(inputs),
        }),
    ]
    return BackupInstancePlan(resources=resources)


@dataclass
class DatabaseCluster:
    endpoint: str
    port: int
    security_group_ids: List[str]
    vpc_id: Optional[str] = None
    subnet_ids: List[str] = field(default_factory=list)


class BackupInstanceManager:
    """Apply or destroy the backup instance resources."""

    def __init__(self, inputs: BackupInstanceInputs):
        self.inputs = inputs
        self.region = inputs.region
        self.ec2_client = get_ec2_client(self.region)
        self.iam_client = get_iam_client(self.region)
        self.rds_client = get_rds_client(self.region)
        self.ssm_client = get_ssm_client(self.region)
        self.sts_client = get_sts_client(self.region)

        logger.info(f"Backup instance manager initialized for region: {self.region}")

    def plan(self) -> BackupInstancePlan:
        return build_plan(self.inputs)

    # Lookups

    def account_id(self) -> str:
        return self.sts_client.get_caller_identity()['Account']

    def describe_cluster(self) -> DatabaseCluster:
        try:
            response = self.rds_client.describe_db_clusters(
                DBClusterIdentifier=self.inputs.cluster_identifier
            )
        except ClientError as e:
            raise ProvisioningError(f"Database cluster {self.inputs.cluster_identifier} not found: {e}")

        cluster = response['DBClusters'][0]
        sg_ids = [g['VpcSecurityGroupId'] for g in cluster.get('VpcSecurityGroups', [])]
        if not sg_ids:
            raise ProvisioningError(f"Database cluster {self.inputs.cluster_identifier} has no security groups")

        vpc_id = None
        sg_response = self.ec2_client.describe_security_groups(GroupIds=sg_ids[:1])
        if sg_response['SecurityGroups']:
            vpc_id = sg_response['SecurityGroups'][0].get('VpcId')

        subnet_ids = []
        subnet_group = cluster.get('DBSubnetGroup')
        if subnet_group:
            try:
                groups = self.rds_client.describe_db_subnet_groups(DBSubnetGroupName=subnet_group)
                for group in groups['DBSubnetGroups']:
                    subnet_ids.extend(s['SubnetIdentifier'] for s in group.get('Subnets', []))
            except ClientError as e:
                logger.warning(f"⚠️  Could not read subnet group {subnet_group}: {e}")

        return DatabaseCluster(
            endpoint=cluster['Endpoint'],
            port=cluster.get('Port') or 5432,
            security_group_ids=sg_ids,
            vpc_id=vpc_id,
            subnet_ids=subnet_ids,
        )

    def lookup_ami(self) -> str:
        """Latest Amazon Linux 2023 AMI for the instance architecture."""
        try:
            response = self.ssm_client.get_parameter(Name=self.inputs.ami_parameter)
        except ClientError as e:
            raise ProvisioningError(f"Could not resolve AMI from {self.inputs.ami_parameter}: {e}")
        ami_id = response['Parameter']['Value']
        logger.info(f"Using Amazon Linux 2023 ({self.inputs.architecture}) AMI: {ami_id}")
        return ami_id

    def find_existing_instance(self) -> Optional[Dict[str, Any]]:
        """Find existing instance by name tag."""
        response = self.ec2_client.describe_instances(
            Filters=[
                {'Name': 'tag:Name', 'Values': [self.inputs.instance_name]},
                {'Name': 'tag:Project', 'Values': [self.inputs.app_name]},
                {'Name': 'instance-state-name', 'Values': ['running', 'pending', 'stopping', 'stopped']}
            ]
        )
        for reservation in response['Reservations']:
            for instance in reservation['Instances']:
                return instance
        return None

    def find_security_group(self, vpc_id: Optional[str]) -> Optional[str]:
        filters = [{'Name': 'group-name', 'Values': [self.inputs.security_group_name]}]
        if vpc_id:
            filters.append({'Name': 'vpc-id', 'Values': [vpc_id]})
        response = self.ec2_client.describe_security_groups(Filters=filters)
        if response['SecurityGroups']:
            return response['SecurityGroups'][0]['GroupId']
        return None

    # Apply

    def ensure_role(self, account_id: str) -> str:
        role_name = self.inputs.role_name
        try:
            self.iam_client.create_role(
                RoleName=role_name,
                AssumeRolePolicyDocument=json.dumps(EC2_TRUST_POLICY),
                Description=f"Database backup restore instance for {self.inputs.cluster_identifier}",
                Tags=self.inputs.tags(role_name)
            )
            logger.info(f"Created IAM role: {role_name}")
        except ClientError as e:
            if error_code(e) != 'EntityAlreadyExists':
                raise
            logger.info(f"Using existing IAM role: {role_name}")

        self.iam_client.put_role_policy(
            RoleName=role_name,
            PolicyName=f"{self.inputs.name_prefix}-access",
            PolicyDocument=json.dumps(access_policy(self.inputs, account_id))
        )
        self.iam_client.attach_role_policy(RoleName=role_name, PolicyArn=SSM_CORE_POLICY_ARN)
        return role_name

    def ensure_instance_profile(self, role_name: str) -> str:
        profile_name = self.inputs.instance_profile_name
        try:
            self.iam_client.create_instance_profile(
                InstanceProfileName=profile_name,
                Tags=self.inputs.tags(profile_name)
            )
            logger.info(f"Created instance profile: {profile_name}")
        except ClientError as e:
            if error_code(e) != 'EntityAlreadyExists':
                raise
            logger.info(f"Using existing instance profile: {profile_name}")

        profile = self.iam_client.get_instance_profile(InstanceProfileName=profile_name)
        attached = [r['RoleName'] for r in profile['InstanceProfile'].get('Roles', [])]
        if role_name not in attached:
            self.iam_client.add_role_to_instance_profile(
                InstanceProfileName=profile_name,
                RoleName=role_name
            )
        return profile_name

    def ensure_security_group(self, cluster: DatabaseCluster) -> str:
        sg_id = self.find_security_group(cluster.vpc_id)
        if sg_id:
            logger.info(f"Using existing security group: {sg_id}")
        else:
            kwargs = {
                'GroupName': self.inputs.security_group_name,
                'Description': f"Backup restore instance for {self.inputs.cluster_identifier}",
                'TagSpecifications': [{
                    'ResourceType': 'security-group',
                    'Tags': self.inputs.tags(self.inputs.security_group_name)
                }]
            }
            if cluster.vpc_id:
                kwargs['VpcId'] = cluster.vpc_id
            # New groups come with an allow-all egress rule
            sg_id = self.ec2_client.create_security_group(**kwargs)['GroupId']
            logger.info(f"Created security group: {sg_id}")

        sources = list(cluster.security_group_ids)
        if self.inputs.additional_security_group_id:
            sources.append(self.inputs.additional_security_group_id)
        for source in sources:
            self._authorize_ingress_from(sg_id, source)
        return sg_id

    def _authorize_ingress_from(self, sg_id: str, source_sg_id: str) -> None:
        try:
            self.ec2_client.authorize_security_group_ingress(
                GroupId=sg_id,
                IpPermissions=[{
                    'IpProtocol': '-1',
                    'UserIdGroupPairs': [{'GroupId': source_sg_id, 'Description': 'Database backup access'}]
                }]
            )
            logger.info(f"Allowed ingress to {sg_id} from {source_sg_id}")
        except ClientError as e:
            if error_code(e) != 'InvalidPermission.Duplicate':
                raise

    def launch_instance(self, ami_id: str, profile_name: str, sg_id: str,
                        cluster: DatabaseCluster, wait: bool = True) -> Dict[str, Any]:
        kwargs = {
            'ImageId': ami_id,
            'InstanceType': self.inputs.instance_type,
            'MinCount': 1,
            'MaxCount': 1,
            'IamInstanceProfile': {'Name': profile_name},
            'SecurityGroupIds': [sg_id],
            'UserData': render_user_data(self.inputs, cluster.endpoint, cluster.port),
            'MetadataOptions': {'HttpTokens': 'required'},
            'TagSpecifications': [{
                'ResourceType': 'instance',
                'Tags': self.inputs.tags(self.inputs.instance_name)
            }],
        }
        if cluster.subnet_ids:
            kwargs['SubnetId'] = cluster.subnet_ids[0]

        instance = self.ec2_client.run_instances(**kwargs)['Instances'][0]
        instance_id = instance['InstanceId']
        logger.info(f"Created backup instance: {instance_id}")

        if wait:
            logger.info("Waiting for backup instance to be running...")
            self.ec2_client.get_waiter('instance_running').wait(InstanceIds=[instance_id])
        return instance

    def apply(self, wait: bool = True) -> Dict[str, Any]:
        """Create or reuse every planned resource.

        Returns:
            Outputs: instance id, security group, role, profile, AMI, architecture
        """
        try:
            account_id = self.account_id()
            cluster = self.describe_cluster()
            role_name = self.ensure_role(account_id)
            profile_name = self.ensure_instance_profile(role_name)
            if wait:
                self.iam_client.get_waiter('instance_profile_exists').wait(
                    InstanceProfileName=profile_name
                )
            sg_id = self.ensure_security_group(cluster)

            existing = self.find_existing_instance()
            if existing:
                instance_id = existing['InstanceId']
                ami_id = existing.get('ImageId')
                logger.info(f"✅ Using existing backup instance: {instance_id}")
            else:
                ami_id = self.lookup_ami()
                instance_id = self.launch_instance(ami_id, profile_name, sg_id, cluster, wait=wait)['InstanceId']
        except (BotoCoreError, ClientError, WaiterError) as e:
            logger.error(f"Failed to apply backup instance: {e}")
            raise ProvisioningError(str(e))

        return {
            'instance_id': instance_id,
            'security_group_id': sg_id,
            'role_name': role_name,
            'instance_profile_name': profile_name,
            'ami_id': ami_id,
            'architecture': self.inputs.architecture,
            'database_endpoint': cluster.endpoint,
            'backup_bucket': self.inputs.bucket,
        }

    # Destroy

    def destroy(self, wait: bool = True) -> List[str]:
        """Remove every resource created by apply(). Missing resources are skipped.

        Returns:
            Descriptions of what was removed
        """
        removed = []
        try:
            existing = self.find_existing_instance()
            if existing:
                instance_id = existing['InstanceId']
                self.ec2_client.terminate_instances(InstanceIds=[instance_id])
                logger.info(f"Terminated backup instance: {instance_id}")
                if wait:
                    self.ec2_client.get_waiter('instance_terminated').wait(InstanceIds=[instance_id])
                removed.append(f"instance {instance_id}")

            sg_id = self.find_security_group(None)
            if sg_id and self._delete_security_group(sg_id, wait):
                removed.append(f"security group {sg_id}")

            removed.extend(self._delete_iam_resources())
        except (BotoCoreError, ClientError, WaiterError) as e:
            logger.error(f"Failed to destroy backup instance: {e}")
            raise ProvisioningError(str(e))
        return removed

    def _delete_security_group(self, sg_id: str, wait: bool) -> bool:
        try:
            self.ec2_client.delete_security_group(GroupId=sg_id)
        except ClientError as e:
            # A terminating instance still holds the group until it is gone
            if wait or error_code(e) != 'DependencyViolation':
                raise
            logger.warning(f"⚠️  Security group {sg_id} still in use, run destroy again once the instance has terminated")
            return False
        logger.info(f"Deleted security group: {sg_id}")
        return True

    def _delete_iam_resources(self) -> List[str]:
        removed = []
        role_name = self.inputs.role_name
        profile_name = self.inputs.instance_profile_name

        try:
            self.iam_client.remove_role_from_instance_profile(
                InstanceProfileName=profile_name, RoleName=role_name
            )
        except ClientError as e:
            if error_code(e) != 'NoSuchEntity':
                raise
        try:
            self.iam_client.delete_instance_profile(InstanceProfileName=profile_name)
            logger.info(f"Deleted instance profile: {profile_name}")
            removed.append(f"instance profile {profile_name}")
        except ClientError as e:
            if error_code(e) != 'NoSuchEntity':
                raise

        try:
            self.iam_client.delete_role_policy(RoleName=role_name, PolicyName=f"{self.inputs.name_prefix}-access")
        except ClientError as e:
            if error_code(e) != 'NoSuchEntity':
                raise
        try:
            self.iam_client.detach_role_policy(RoleName=role_name, PolicyArn=SSM_CORE_POLICY_ARN)
        except ClientError as e:
            if error_code(e) != 'NoSuchEntity':
                raise
        try:
            self.iam_client.delete_role(RoleName=role_name)
            logger.info(f"Deleted IAM role: {role_name}")
            removed.append(f"role {role_name}")
        except ClientError as e:
            if error_code(e) != 'NoSuchEntity':
                raise
        return removed
