"""Device registration schemas."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DeviceRegisterRequest(BaseModel):
    user_id: UUID
    token: str = Field(..., min_length=1, max_length=255)
    platform: str = Field("", max_length=20)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
