from mongoengine import EmailField, StringField
from exam_portal.models.base import BaseDocument
from exam_portal.utils.base import UserRole


class User(BaseDocument):
    """User document.

    Fields:
    - name (str): Full name
    - email (EmailStr, unique): Login identifier
    - password (str, hashed): Bcrypt-hashed password
    - role (str): student/admin
    - roll_no (str|None): Institution roll number shown on result sheets
    - token_version (str): Incremented on logout to invalidate tokens
    """
    name = StringField(required=True, null=False)
    password = StringField(required=True, null=False)
    email = EmailField(required=True, null=False, unique=True)
    role = StringField(required=True, null=False, default=UserRole.STUDENT.value, choices=UserRole.choices())
    roll_no = StringField(required=False)
    token_version = StringField(required=True, null=False, default="1")

    meta = {
        "collection": "users",
        "indexes": [
            {"fields": ["email"], "unique": True},
        ],
    }

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def to_output(self, fields=None, exclude=None):
        exclude = list(exclude or []) + ["password", "token_version"]
        return super().to_output(fields=fields, exclude=exclude)
