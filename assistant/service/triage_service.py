"""
증상 분류(triage) 휴리스틱

의학적 판단이 아니라 키워드 기반의 보수적인 안내용 신호만 만듭니다.
- assess_self_care: 자가 관리로 충분한지 / 지병 때문에 주의 관찰이 필요한지
- should_suggest_appointment: 응답에 진료 예약 버튼을 띄울지
- self_care_note: 응답 끝에 붙일 주의 문구
"""
from dataclasses import dataclass
from typing import Optional

from schemas.profile import UserProfile

# 항상 전문가 진료가 필요한 증상
ALWAYS_CONSULT = (
    "chest pain", "difficulty breathing", "shortness of breath", "severe pain",
    "head injury", "loss of consciousness", "seizure", "stroke", "heart attack",
    "coughing blood", "vomiting blood", "severe bleeding", "severe burn",
    "broken bone", "dislocation", "poisoning", "overdose", "suicidal thoughts",
)

# 지병이 이것들이면 자가 관리를 하더라도 주의 관찰
HIGH_RISK_CONDITIONS = (
    "diabetes", "heart disease", "copd", "asthma", "immunocompromised", "cancer", "kidney disease",
)

# 응답 자체가 진료를 권하고 있다는 신호
APPOINTMENT_KEYWORDS = (
    "doctor", "appointment", "medical attention", "healthcare provider", "consult", "professional", "emergency",
)
EMERGENCY_KEYWORDS = (
    "severe", "unbearable", "worst", "extreme", "excruciating", "can't breathe", "chest pain",
    "collapsed", "unconscious", "seizure", "stroke", "heart attack",
)
URGENT_KEYWORDS = (
    "fever", "infection", "worsening", "spreading", "persistent", "days", "no improvement", "getting worse",
)

MEDICAL_TERMS = (
    # 증상
    "pain", "ache", "sore", "hurt", "discomfort", "swelling", "fever", "cough", "cold", "flu",
    "headache", "migraine", "nausea", "vomit", "diarrhea", "constipation", "rash", "itch",
    "fatigue", "tired", "exhausted", "dizzy", "faint", "weak", "numbness", "tingle",
    "bleed", "blood", "bruise", "burn", "wound", "injury", "sprain", "strain",
    "breath", "wheeze", "chest", "heart", "palpitation", "pressure", "vision", "hearing",
    "throat", "stomach", "abdomen", "back", "neck", "shoulder", "joint", "muscle",
    "sleep", "insomnia", "appetite", "weight", "thirst", "urination", "bowel", "stool",
    # 질환
    "allergy", "asthma", "diabetes", "hypertension", "cholesterol", "arthritis",
    "infection", "virus", "bacterial", "inflammation", "disease", "disorder", "syndrome",
    "cancer", "tumor", "depression", "anxiety", "stress", "mental", "cardiac",
    "stroke", "kidney", "liver", "lung", "respiratory", "digestive", "thyroid", "chronic", "acute",
    # 치료
    "medicine", "medication", "drug", "pill", "tablet", "prescription", "dose",
    "therapy", "treatment", "surgery", "exercise", "diet", "nutrition", "supplement", "vitamin",
    # 의료 이용
    "doctor", "physician", "specialist", "nurse", "hospital", "clinic", "emergency",
    "appointment", "checkup", "diagnosis", "symptom", "side effect",
)


@dataclass(frozen=True)
class SelfCareAssessment:
    appropriate: bool
    reason: str
    monitor_closely: bool = False


def extract_key_terms(text: str) -> list[str]:
    lowered = text.lower()
    return [term for term in MEDICAL_TERMS if term in lowered]


def assess_self_care(message: str, profile: Optional[UserProfile] = None) -> SelfCareAssessment:
    lowered = message.lower()
    for condition in ALWAYS_CONSULT:
        if condition in lowered:
            return SelfCareAssessment(
                appropriate=False,
                reason=f'Symptoms like "{condition}" need to be checked by a medical professional.',
            )

    conditions = (profile.chronic_conditions or "").lower() if profile else ""
    for condition in HIGH_RISK_CONDITIONS:
        if condition in conditions:
            return SelfCareAssessment(
                appropriate=True,
                monitor_closely=True,
                reason=(
                    f"Self-care may be enough for now, but with {condition} you should watch your "
                    "symptoms closely and get medical help if anything gets worse."
                ),
            )

    return SelfCareAssessment(
        appropriate=True,
        reason="Self-care measures may be enough for symptoms like these. Keep an eye on any changes.",
    )


def should_suggest_appointment(
    message: str,
    response: str,
    assessment: Optional[SelfCareAssessment] = None,
    responder_suggested: bool = False,
) -> bool:
    """
    예약 제안 여부
    1. 규칙 기반 응답이 이미 제안했거나 응답 텍스트가 진료를 권함
    2. 사용자 메시지에 응급 키워드
    3. 긴급 키워드 + 의학 용어가 함께 있음
    4. 자가 관리가 부적절하다고 판정
    """
    if responder_suggested:
        return True
    if any(keyword in response.lower() for keyword in APPOINTMENT_KEYWORDS):
        return True

    lowered = message.lower()
    if any(keyword in lowered for keyword in EMERGENCY_KEYWORDS):
        return True
    if any(keyword in lowered for keyword in URGENT_KEYWORDS) and extract_key_terms(lowered):
        return True
    return assessment is not None and not assessment.appropriate


def self_care_note(message: str, assessment: SelfCareAssessment) -> str:
    """응답 끝에 붙일 문구: 의학 용어가 없거나 예약 문의면 빈 문자열"""
    lowered = message.lower()
    if not extract_key_terms(lowered) or "appointment" in lowered:
        return ""
    if assessment.monitor_closely:
        return f"\n\nImportant note: {assessment.reason}"
    if not assessment.appropriate:
        return f"\n\nCaution: {assessment.reason}"
    return ""
