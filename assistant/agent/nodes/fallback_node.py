"""
규칙 기반 응답 노드: 모든 네트워크 경로가 실패했을 때의 마지막 보루

- 순수 함수: 같은 입력이면 항상 같은 응답, 외부 호출 없음
- 빈 문자열을 포함한 어떤 입력에도 비어있지 않은 응답을 반환
- 진단하지 않고, 위험 신호가 있으면 진료를 권함
"""
import re
from dataclasses import dataclass
from typing import Optional

from langchain_core.runnables import RunnableConfig

from agent.state import AssistantState
from agent.transitions import RULE_BASED_FALLBACK
from core.logger import get_logger
from service.conversation_service import ConversationTurn, last_assistant_message, recent_user_messages
from service.triage_service import extract_key_terms

logger = get_logger("fallback")


@dataclass(frozen=True)
class RuleBasedReply:
    text: str
    suggest_appointment: bool = False


def _has(message: str, *keywords: str) -> bool:
    return any(keyword in message for keyword in keywords)


def _has_word(message: str, *words: str) -> bool:
    # "hi"가 "this"에, "eat"가 "great"에 걸리지 않도록 단어 경계로 검사
    return any(re.search(rf"\b{re.escape(word)}\b", message) for word in words)


# ─── 로그인 사용자용 응답 문구 ───

GREETING = "Hello! I'm your AI health assistant. I can share general health information and point you to the right kind of care. What can I help you with today?"

HEADACHE_SERIOUS = (
    "A headache that is severe or keeps coming back over several days needs medical attention, "
    "because it can sometimes point to a condition that should be examined. Please book an appointment "
    "with a doctor soon, and seek emergency care right away if you notice confusion, a stiff neck, "
    "weakness or changes in your vision."
)
HEADACHE_MILD = (
    "Most everyday headaches come from stress, dehydration, poor sleep or eye strain. Things that often help:\n\n"
    "- Drink a glass or two of water\n"
    "- Rest somewhere quiet and take a break from screens\n"
    "- Try an over-the-counter pain reliever, following the package directions\n\n"
    "If the headache lasts more than a few days, gets worse, or comes with fever, vision changes or a stiff neck, "
    "please see a healthcare professional."
)
FEVER_SERIOUS = (
    "A high fever, or one that has lasted several days, should be checked by a healthcare provider soon. "
    "It can be a sign of an infection that needs proper diagnosis and treatment."
)
FEVER_MILD = (
    "A mild fever is usually your body fighting off an infection. To stay comfortable:\n\n"
    "- Rest and drink plenty of fluids\n"
    "- Use a fever reducer as directed on the label\n"
    "- A cool compress can help\n\n"
    "Get medical care if the fever goes above 39.4°C (103°F), lasts more than three days, or comes with "
    "trouble breathing, chest pain or confusion."
)
COUGH_SERIOUS = (
    "Coughing up blood, trouble breathing, chest pain, or a cough that has lasted for weeks all need prompt "
    "medical attention. Please contact a healthcare provider as soon as you can."
)
COUGH_MILD = (
    "Most coughs come from colds or minor irritation and clear up within a couple of weeks. Warm drinks, honey "
    "(not for children under one), rest and a humidifier can ease it. See a doctor if it lasts longer than three "
    "weeks or you develop a high fever or shortness of breath."
)
SKIN_SERIOUS = (
    "A rash that is spreading quickly, painful, on your face, or comes with fever or throat swelling should be "
    "seen by a doctor promptly. Throat or facial swelling with a rash can be an allergic emergency."
)
SKIN_MILD = (
    "Many rashes are caused by irritation or a mild allergy. Keep the area clean and dry, avoid scratching, skip "
    "new soaps or lotions, and try a fragrance-free moisturizer. If it spreads, blisters or doesn't improve in a "
    "few days, have a healthcare provider take a look."
)
STOMACH_SERIOUS = (
    "Blood in vomit or stool, severe abdominal pain, signs of dehydration, or symptoms lasting several days need "
    "medical attention. Please reach out to a healthcare provider soon."
)
STOMACH_MILD = (
    "For an upset stomach, sip clear fluids often, try bland foods like rice, bananas or toast once you can eat, "
    "and rest. Avoid fatty or spicy food for a day or two. If you can't keep fluids down or it lasts more than "
    "two days, contact a healthcare provider."
)
CHEST = (
    "Chest pain or heart-related symptoms should never be ignored. If the pain is severe, spreads to your arm, "
    "jaw or back, or comes with shortness of breath, sweating or nausea, call emergency services now. "
    "Otherwise, please see a doctor as soon as possible."
)
BREATHING = (
    "Difficulty breathing needs prompt medical attention. If you are struggling to breathe, your lips look "
    "bluish, or you feel faint, call emergency services immediately. For milder breathlessness, please contact "
    "a healthcare provider today."
)
APPOINTMENT = (
    "I can help you get an appointment with a doctor. Use the appointment option to choose a provider and a "
    "time that works for you. Let me know if you'd like help describing your symptoms before the visit."
)
MENTAL_CRISIS = (
    "I'm really sorry you're going through this, and I'm glad you reached out. If you are thinking about harming "
    "yourself, please call or text 988 (Suicide & Crisis Lifeline) or your local emergency number right now. "
    "You don't have to face this alone, and a mental health professional can help."
)
MENTAL_SUPPORT = (
    "Stress and anxiety are very common, and there are things that help:\n\n"
    "- Slow breathing: in for four counts, out for six\n"
    "- Regular sleep, movement and time outdoors\n"
    "- Talking with someone you trust\n\n"
    "If these feelings are affecting your daily life, a mental health professional can offer real support."
)
THANKS = "You're welcome! I'm glad I could help. Is there anything else you'd like to ask about your health?"
GOODBYE = "Take care! Come back any time you have a health question."
DIET_WEIGHT = (
    "Sustainable weight loss usually comes from small, steady changes: more vegetables and protein, fewer "
    "sugary drinks and processed snacks, sensible portions, and regular activity. Aim for about 0.5 to 1 kg a "
    "week. A doctor or dietitian can help you set a plan that fits your health."
)
DIET_DIABETES = (
    "With diabetes, steady meals built around vegetables, lean protein, whole grains and healthy fats help keep "
    "blood sugar stable. Limit sugary drinks and refined carbs. Because your needs depend on your medication and "
    "targets, please talk to your doctor or a diabetes educator about a meal plan."
)
DIET_GENERAL = (
    "A balanced diet includes plenty of vegetables and fruit, whole grains, lean protein and healthy fats, with "
    "fewer processed foods and added sugars. Drinking enough water matters too."
)
EXERCISE_INJURY = (
    "If you have back pain, joint pain or an injury, check with a doctor or physical therapist before starting or "
    "changing an exercise routine, so you can train safely without making it worse."
)
EXERCISE_BEGINNER = (
    "A good way to start exercising: begin with 10 to 15 minute walks most days, add two short strength sessions "
    "a week, and increase slowly. Working up to 150 minutes of moderate activity per week is a great goal."
)
EXERCISE_GENERAL = (
    "Adults benefit from about 150 minutes of moderate activity a week plus two days of strength training. "
    "Mix cardio, strength and flexibility, and pick activities you enjoy so you keep them up."
)
NOT_IMPROVING = (
    "Since your symptoms don't seem to be getting better, it would be wise to have a doctor check them. "
    "Symptoms that persist or worsen deserve a proper evaluation."
)
MEDICATION = (
    "For questions about medications, doses, side effects or interactions, your doctor or pharmacist is the best "
    "source, since they know your history. Always take medicines as prescribed and check before combining them."
)
WHAT_NEXT_ADVICE = {
    "cold": "For a cold or flu, rest, drink fluids, and consider saline spray or warm drinks for congestion and a sore throat.",
    "headache": "For a headache, hydrate, rest in a quiet dark room and take a break from screens.",
    "musculoskeletal": "For muscle or joint pain, rest the area, use ice for the first two days and heat after that, and stretch gently.",
    "digestive": "For stomach trouble, stick to small bland meals, sip fluids and avoid fatty or spicy food for a while.",
    "skin": "For skin irritation, keep the area clean and moisturized, avoid scratching and skip new products.",
    "sleep": "For better sleep, keep a regular schedule, avoid caffeine late in the day and put screens away an hour before bed.",
    "stress": "For stress, try slow breathing, a short walk, and talking to someone you trust.",
    "allergy": "For allergies, limit exposure to the trigger and consider an over-the-counter antihistamine.",
}
WHAT_NEXT_GROUPS = (
    ("cold", ("cold", "flu", "cough", "congestion", "sore throat", "runny nose")),
    ("headache", ("headache", "migraine")),
    ("musculoskeletal", ("joint", "muscle", "back", "neck", "shoulder", "knee", "arthritis", "sprain", "strain")),
    ("digestive", ("stomach", "nausea", "vomit", "diarrhea", "constipation", "heartburn", "bloating")),
    ("skin", ("rash", "itch", "skin", "hives", "eczema", "acne")),
    ("sleep", ("sleep", "insomnia", "tired", "fatigue", "exhausted")),
    ("stress", ("stress", "anxiety", "worry", "nervous", "panic", "mental")),
    ("allergy", ("allergy", "allergic", "hay fever", "pollen")),
)
WHAT_NEXT_GENERIC = (
    "Rest, fluids and keeping an eye on how your symptoms change are good first steps. If anything gets worse "
    "or doesn't improve in a few days, please see a healthcare provider."
)
ASK_FOR_DETAILS = (
    "I'd like to help. Could you tell me more about what's going on, such as your symptoms, how long they've "
    "lasted and how severe they feel?"
)
CONDITION_INFO = {
    "diabetes": (
        "Diabetes is a condition where blood sugar stays too high, either because the body makes too little "
        "insulin or doesn't use it well. Management usually combines healthy eating, activity, monitoring and "
        "medication when prescribed. Regular check-ups help prevent complications."
    ),
    "hypertension": (
        "Hypertension means blood pressure is consistently too high. It often has no symptoms, so regular "
        "checks matter. Less salt, regular activity, a healthy weight, limited alcohol, not smoking and "
        "prescribed medication all help keep it under control."
    ),
    "asthma": (
        "Asthma is a long-term condition where the airways become inflamed and narrow, causing wheezing, "
        "coughing and breathlessness. Knowing your triggers and using inhalers as prescribed keeps most asthma "
        "well controlled."
    ),
    "arthritis": (
        "Arthritis covers conditions that cause joint pain and stiffness. Gentle exercise, weight management, "
        "heat or cold therapy and medication recommended by a doctor can reduce symptoms."
    ),
}
CONDITION_GENERIC = (
    "That's a good question. I can give general information, but a healthcare provider can explain how it "
    "applies to you specifically and whether any tests or treatment are needed."
)
GENERAL_KNOWLEDGE = (
    "I'm mainly here for health questions, so I may not have a full answer to that right now. Is there "
    "anything about your health or wellbeing I can help with?"
)
DEFAULT_WELLNESS = (
    "I'm having trouble giving you a detailed answer right now, but here are a few things that support good "
    "health: drink enough water, aim for 7 to 9 hours of sleep, stay active, eat plenty of vegetables and fruit, "
    "and make time to relax. For any specific medical concern, please consult a healthcare professional."
)

# ─── 게스트용 응답 문구 ───

GUEST_GREETING = "Hello! I'm the SoulSpace assistant. I can tell you about our healthcare platform and its services. What would you like to know?"
GUEST_SERVICES = (
    "SoulSpace brings your care together in one place:\n"
    "1. Online appointment booking with healthcare providers\n"
    "2. Virtual and in-person consultations\n"
    "3. Health monitoring with wearable devices\n"
    "4. An AI health assistant for everyday questions\n"
    "5. Secure medical records\n"
    "6. Medication reminders\n\n"
    "Which of these would you like to hear more about?"
)
GUEST_APPOINTMENT = (
    "With SoulSpace you can book in-person or virtual appointments with healthcare providers. "
    "Create a free account to get started."
)
GUEST_WEARABLE = (
    "SoulSpace connects with popular wearables to track heart rate, blood pressure and oxygen levels, "
    "so your care team can give more personalized advice."
)
GUEST_HEALTH_TIPS = (
    "A few everyday health tips:\n"
    "1. Drink water regularly through the day\n"
    "2. Get 7 to 9 hours of sleep\n"
    "3. Move for at least 150 minutes a week\n"
    "4. Fill half your plate with vegetables and fruit\n"
    "5. Take short breaks from screens\n\n"
    "For personalized recommendations, consider creating a SoulSpace account."
)
GUEST_DEFAULT = (
    "I'm here to help you learn about SoulSpace: appointment booking, health monitoring, AI assistance and more. "
    "What would you like to know?"
)

CRISIS_TERMS = ("suicid", "kill myself", "harm myself", "hurt myself", "end my life")


def _what_next(message: str, key_terms: list[str], previous_terms: list[str]) -> RuleBasedReply:
    terms = " ".join(key_terms + previous_terms) + " " + message
    if not key_terms and not previous_terms:
        return RuleBasedReply(ASK_FOR_DETAILS)
    for group, keywords in WHAT_NEXT_GROUPS:
        if _has(terms, *keywords):
            return RuleBasedReply(f"{WHAT_NEXT_ADVICE[group]} {WHAT_NEXT_GENERIC}")
    return RuleBasedReply(WHAT_NEXT_GENERIC, suggest_appointment=True)


def _condition_info(message: str, key_terms: list[str]) -> RuleBasedReply:
    if _has(message, "diabetes"):
        return RuleBasedReply(CONDITION_INFO["diabetes"])
    if _has(message, "hypertension", "high blood pressure") or _has(message, "blood") and _has(message, "pressure"):
        return RuleBasedReply(CONDITION_INFO["hypertension"])
    if _has(message, "asthma"):
        return RuleBasedReply(CONDITION_INFO["asthma"])
    if _has(message, "arthritis"):
        return RuleBasedReply(CONDITION_INFO["arthritis"])
    if key_terms:
        return RuleBasedReply(CONDITION_GENERIC, suggest_appointment=True)
    return RuleBasedReply(GENERAL_KNOWLEDGE)


def _guest_response(message: str, history: list[ConversationTurn]) -> RuleBasedReply:
    if _has_word(message, "hello", "hi", "hey") and len(history) <= 1:
        return RuleBasedReply(GUEST_GREETING)
    if _has(message, "service", "offer", "provide"):
        return RuleBasedReply(GUEST_SERVICES)
    if _has(message, "appointment", "book", "schedule", "doctor"):
        return RuleBasedReply(GUEST_APPOINTMENT)
    if _has(message, "wearable", "device", "monitor"):
        return RuleBasedReply(GUEST_WEARABLE)
    if _has(message, "health tip", "advice", "tips"):
        return RuleBasedReply(GUEST_HEALTH_TIPS)
    return RuleBasedReply(GUEST_DEFAULT)


def rule_based_response(
    message: str,
    history: Optional[list[ConversationTurn]] = None,
    guest: bool = False,
) -> RuleBasedReply:
    """
    키워드 규칙을 위에서부터 순서대로 검사: 처음 맞는 규칙의 응답을 반환
    맞는 규칙이 없으면 일반 건강 안내
    """
    history = history or []
    current = (message or "").lower()
    if guest:
        return _guest_response(current, history)

    previous = recent_user_messages(history)
    key_terms = extract_key_terms(current)
    previous_terms = [term for text in previous for term in extract_key_terms(text)]

    if _has_word(current, "hello", "hi", "hey") and len(previous) <= 1:
        return RuleBasedReply(GREETING)

    if _has(current, "headache", "migraine"):
        serious = _has(current, "severe", "worst", "terrible", "unbearable", "days", "weeks", "constant", "won't go away")
        return RuleBasedReply(HEADACHE_SERIOUS, True) if serious else RuleBasedReply(HEADACHE_MILD)

    if _has(current, "fever"):
        serious = _has(current, "high", "103", "104", "39", "40", "days", "week")
        return RuleBasedReply(FEVER_SERIOUS, True) if serious else RuleBasedReply(FEVER_MILD)

    if _has(current, "cough"):
        serious = _has(current, "blood", "can't breathe", "difficult to breathe", "chest pain", "weeks")
        return RuleBasedReply(COUGH_SERIOUS, True) if serious else RuleBasedReply(COUGH_MILD)

    if _has(current, "rash", "skin"):
        serious = _has(current, "spreading", "fever", "pain", "face", "throat")
        return RuleBasedReply(SKIN_SERIOUS, True) if serious else RuleBasedReply(SKIN_MILD)

    if _has(current, "stomach", "nausea", "vomit", "diarrhea"):
        serious = _has(current, "blood", "severe", "days", "dehydrated")
        return RuleBasedReply(STOMACH_SERIOUS, True) if serious else RuleBasedReply(STOMACH_MILD)

    if _has(current, "chest pain", "heart"):
        return RuleBasedReply(CHEST, True)

    if _has(current, "breathing", "breath"):
        return RuleBasedReply(BREATHING, True)

    if _has(current, "appointment", "book", "schedule", "doctor"):
        return RuleBasedReply(APPOINTMENT, True)

    if _has(current, "stress", "anxiety", "anxious", "depress") or _has(current, *CRISIS_TERMS):
        crisis = _has(current, "severe", *CRISIS_TERMS)
        return RuleBasedReply(MENTAL_CRISIS if crisis else MENTAL_SUPPORT, True)

    if _has(current, "thank"):
        return RuleBasedReply(THANKS)

    if _has_word(current, "bye", "goodbye"):
        return RuleBasedReply(GOODBYE)

    if _has(current, "diet", "nutrition", "food") or _has_word(current, "eat", "eating"):
        if _has(current, "weight loss", "lose weight"):
            return RuleBasedReply(DIET_WEIGHT)
        if _has(current, "diabetes", "blood sugar"):
            return RuleBasedReply(DIET_DIABETES, True)
        return RuleBasedReply(DIET_GENERAL)

    if _has(current, "exercise", "workout", "fitness", "physical activity"):
        if _has(current, "back pain", "joint pain", "injury"):
            return RuleBasedReply(EXERCISE_INJURY, True)
        if _has(current, "start", "beginner"):
            return RuleBasedReply(EXERCISE_BEGINNER)
        return RuleBasedReply(EXERCISE_GENERAL)

    if len(previous) >= 2 and any(_has(text, "still", "worse", "not better") for text in previous):
        return RuleBasedReply(NOT_IMPROVING, True)

    if _has(current, "medicine", "medication", "prescription") or _has_word(current, "drug", "drugs", "pill", "pills"):
        return RuleBasedReply(MEDICATION, True)

    if _has(current, "what should i do", "how to treat", "how do i", "what can i do", "how can i", "what to do"):
        return _what_next(current, key_terms, previous_terms)

    if _has(current, "what is", "tell me about", "information about", "learn about"):
        return _condition_info(current, key_terms)

    # 이전 응답이 추가 설명을 요청한 상태면 짧은 답도 그대로 받아들임
    following_up = _has(last_assistant_message(history).lower(), "tell me more", "could you share more", "provide more details")
    if len(current.split()) < 3 and not following_up:
        return RuleBasedReply(ASK_FOR_DETAILS, suggest_appointment=bool(key_terms))

    return RuleBasedReply(DEFAULT_WELLNESS)


async def rule_based_fallback_node(state: AssistantState, config: RunnableConfig) -> dict:
    """
    RuleBasedFallback 상태
    트리거: 모든 티어 실패 / 보조 제공자 없음 / 사전 점검에서 예산 초과
    """
    reply = rule_based_response(state["message"], state.get("history"), guest=state.get("guest", False))
    logger.info(
        "resolved with rule-based responder",
        extra={"extra_data": {"user_id": state.get("user_id"), "quota_exceeded": state.get("quota_exceeded", False)}},
    )
    return {
        "stage": RULE_BASED_FALLBACK,
        "outcome": "answered",
        "response": reply.text,
        "responder_suggested": reply.suggest_appointment,
        "using_fallback": True,
        "resolved_by": "rule_based",
    }
