import enum

from pydantic import BaseModel


class Role(str, enum.Enum):
    admin = "ADMIN"
    advocate = "ADVOCATE"
    collections = "COLLECTIONS"
    vendor = "VENDOR"


class Actor(BaseModel):
    id: str
    role: Role
    vendor_code: str | None = None
