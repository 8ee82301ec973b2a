from enum import Enum


class UserRole(str, Enum):
    MEMBER  = "member"
    OFFICER = "officer"
    ADMIN   = "admin"


class SectionType(str, Enum):
    SECTION_33 = "33"   # employee
    SECTION_39 = "39"   # voluntary, ex-employee
    SECTION_40 = "40"   # informal worker


class BenefitStatus(str, Enum):
    ACTIVE  = "active"
    PENDING = "pending"
    EXPIRED = "expired"
    CLAIMED = "claimed"


# Thai labels for benefit_type values, used in rendered notification text
BENEFIT_LABELS_TH: dict[str, str] = {
    "illness":       "เจ็บป่วย",
    "healthcare":    "รักษาพยาบาล",
    "unemployment":  "ว่างงาน",
    "maternity":     "คลอดบุตร",
    "childbirth":    "คลอดบุตร",
    "child_support": "สงเคราะห์บุตร",
    "disability":    "ทุพพลภาพ",
    "old_age":       "ชราภาพ",
    "death":         "เสียชีวิต",
}


def benefit_label(benefit_type: str) -> str:
    return BENEFIT_LABELS_TH.get(benefit_type, benefit_type)
