from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class Member(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., max_length=100)
    email: Optional[str] = None
