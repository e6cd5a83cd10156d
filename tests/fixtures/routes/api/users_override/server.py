from pydantic import BaseModel

from auto_openapi.schema import builder as s
from auto_openapi.validation.http import json_response


class CreateUser(BaseModel):
    name: str
    age: int


route_config = {
    "openapi_override": {
        "POST": {
            "summary": "Create a user",
            "tags": ["users"],
            "$headers": s.object({"x-api-key": s.string(min_length=8)}),
        },
    },
    "validation": {
        "POST": {
            "input": {"body": CreateUser},
            "output": {201: {"body": CreateUser}},
        },
    },
}


async def POST(request):
    payload = CreateUser.model_validate(await request.json())
    return json_response(payload.model_dump(), status=201)
