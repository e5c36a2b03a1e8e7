"""
증상 분류 휴리스틱 테스트
"""
from schemas.profile import UserProfile
from service.triage_service import (
    SelfCareAssessment,
    assess_self_care,
    extract_key_terms,
    self_care_note,
    should_suggest_appointment,
)


def test_의학_용어_추출():
    terms = extract_key_terms("My Throat is SORE and I have a fever")
    assert "throat" in terms
    assert "sore" in terms
    assert "fever" in terms
    assert extract_key_terms("what a lovely day") == []


def test_흉통은_자가관리_부적절():
    assessment = assess_self_care("I have chest pain when I walk")
    assert assessment.appropriate is False
    assert "chest pain" in assessment.reason


def test_고위험_지병이면_주의_관찰():
    profile = UserProfile(chronic_conditions="Type 2 Diabetes")
    assessment = assess_self_care("I have a mild cold", profile)
    assert assessment.appropriate is True
    assert assessment.monitor_closely is True
    assert "diabetes" in assessment.reason


def test_일반_증상은_자가관리_가능():
    assessment = assess_self_care("I have a runny nose")
    assert assessment.appropriate is True
    assert assessment.monitor_closely is False


def test_응답이_진료를_권하면_예약_제안():
    assert should_suggest_appointment("I feel off", "You should see a doctor soon.") is True


def test_응급_키워드면_예약_제안():
    assert should_suggest_appointment("I have a severe headache", "Try to rest.") is True


def test_긴급_키워드와_의학_용어가_같이_있으면_예약_제안():
    assert should_suggest_appointment("fever for 3 days now", "Rest and hydrate.") is True


def test_규칙_기반_응답이_제안했으면_그대로():
    assert should_suggest_appointment("hello", "Hi there!", responder_suggested=True) is True


def test_자가관리_부적절_판정이면_예약_제안():
    assessment = SelfCareAssessment(appropriate=False, reason="needs care")
    assert should_suggest_appointment("hmm", "Okay.", assessment) is True


def test_평범한_대화는_제안_안함():
    assert should_suggest_appointment("thanks a lot", "You're welcome!") is False


def test_주의_문구():
    caution = self_care_note("I have chest pain", assess_self_care("I have chest pain"))
    assert caution.startswith("\n\nCaution: ")

    profile = UserProfile(chronic_conditions="asthma")
    note = self_care_note("I have a cough", assess_self_care("I have a cough", profile))
    assert note.startswith("\n\nImportant note: ")


def test_의학_용어가_없거나_예약_문의면_문구_없음():
    assert self_care_note("hello there", assess_self_care("hello there")) == ""
    message = "can I book an appointment for my chest pain"
    assert self_care_note(message, assess_self_care(message)) == ""
    assert self_care_note("I have a runny nose and cough", assess_self_care("I have a runny nose and cough")) == ""
