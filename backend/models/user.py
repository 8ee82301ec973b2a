from typing import Optional
from pydantic import BaseModel

from models.common import UserRole, SectionType


class Profile(BaseModel):
    user_id:      str
    role:         UserRole = UserRole.MEMBER
    phone:        Optional[str] = None     # E.164 : "+66XXXXXXXXX"
    full_name_th: Optional[str] = None
    section_type: Optional[SectionType] = None
    pdpa_consent: bool = False


class LineUserMapping(BaseModel):
    user_id:      str
    line_user_id: str
