from datetime import date
from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class UserProfile(BaseModel):
    """유저/프로필 저장소가 넘겨주는 값: 시스템 프롬프트 생성에만 사용"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = None
    date_of_birth: Optional[date] = None
    chronic_conditions: Optional[str] = None
    allergies: Optional[str] = None
