from dataclasses import dataclass
from typing import Literal, NotRequired, Optional, TypedDict


class Address(TypedDict):
    street: str
    city: str
    zip: NotRequired[str]


@dataclass
class User:
    id: int
    name: str
    email: str
    age: int
    role: Literal["admin", "member"] = "member"
    address: Optional[Address] = None


class UserUpdate(TypedDict, total=False):
    name: str
    email: str
