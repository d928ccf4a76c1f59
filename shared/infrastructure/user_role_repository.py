import boto3
from typing import Optional
from botocore.exceptions import ClientError

from ..config import SchedulingConfig
from ..domain.entities import ActorRole, UserRoleEntity, UserStatus
from ..utils import Logger, parse_iso_datetime, to_iso_string

logger = Logger()


class DynamoDBUserRoleRepository:
    """DynamoDB implementation of UserRole repository"""

    def __init__(self, table_name: Optional[str] = None):
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name or SchedulingConfig.USER_ROLES_TABLE)

    def get(self, user_id: str) -> Optional[UserRoleEntity]:
        try:
            response = self.table.get_item(Key={'userId': user_id})
        except ClientError as e:
            logger.error("Error getting user role", user_id=user_id, error=str(e))
            raise
        item = response.get('Item')
        return self._item_to_entity(item) if item else None

    def get_email(self, user_id: str) -> Optional[str]:
        user = self.get(user_id)
        return user.email if user and user.is_active() else None

    def save(self, user_role: UserRoleEntity) -> None:
        item = {
            'userId': user_role.user_id,
            'email': user_role.email,
            'role': user_role.role.value,
            'status': user_role.status.value,
            'createdAt': to_iso_string(user_role.created_at),
            'updatedAt': to_iso_string(user_role.updated_at)
        }
        if user_role.name:
            item['name'] = user_role.name

        self.table.put_item(Item=item)

    def _item_to_entity(self, item: dict) -> UserRoleEntity:
        return UserRoleEntity(
            user_id=item['userId'],
            email=item['email'],
            role=ActorRole(item['role']),
            status=UserStatus(item['status']),
            name=item.get('name'),
            created_at=parse_iso_datetime(item['createdAt']),
            updated_at=parse_iso_datetime(item['updatedAt'])
        )
