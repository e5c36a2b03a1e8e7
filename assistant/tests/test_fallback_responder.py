"""
규칙 기반 응답 테스트: 네트워크가 전부 실패해도 항상 답을 돌려줘야 함
"""
import asyncio
import random
import string

from agent.nodes import fallback_node as responder
from agent.nodes.fallback_node import rule_based_fallback_node, rule_based_response


def _history(*user_messages):
    return [{"role": "user", "text": text} for text in user_messages]


def test_어떤_입력에도_비어있지_않은_응답():
    rng = random.Random(42)
    noise = "".join(rng.choice(string.ascii_letters + string.punctuation + "  ") for _ in range(5000))
    for message in ("", "   ", "headache", noise, "🙂", "?"):
        assert rule_based_response(message).text.strip()


def test_같은_입력이면_같은_응답():
    assert rule_based_response("I have a cough") == rule_based_response("I have a cough")


def test_심한_두통은_진료_권유():
    reply = rule_based_response("I've had a severe headache for 3 days")
    assert reply.text == responder.HEADACHE_SERIOUS
    assert reply.suggest_appointment is True


def test_가벼운_두통은_자가관리_안내():
    reply = rule_based_response("I have a headache")
    assert reply.text == responder.HEADACHE_MILD
    assert reply.suggest_appointment is False


def test_인사는_대화_초반에만():
    assert rule_based_response("hi there").text == responder.GREETING
    later = rule_based_response("hi there", _history("first question", "second question"))
    assert later.text != responder.GREETING


def test_단어_일부는_인사로_보지_않음():
    assert rule_based_response("this is about my sleep").text != responder.GREETING


def test_위기_표현이면_988_안내():
    reply = rule_based_response("I'm so stressed I want to hurt myself")
    assert "988" in reply.text
    assert reply.suggest_appointment is True


def test_흉통은_항상_진료_권유():
    reply = rule_based_response("my chest pain comes and goes")
    assert reply.text == responder.CHEST
    assert reply.suggest_appointment is True


def test_이전_증상을_보고_다음_행동_안내():
    reply = rule_based_response("what should I do?", _history("I have a sore throat and a cold"))
    assert reply.text.startswith(responder.WHAT_NEXT_ADVICE["cold"])


def test_맥락없는_다음_행동_질문은_자세히_물어봄():
    assert rule_based_response("what should I do?").text == responder.ASK_FOR_DETAILS


def test_질환_정보():
    assert rule_based_response("what is diabetes").text == responder.CONDITION_INFO["diabetes"]


def test_나아지지_않는_증상은_진료_권유():
    reply = rule_based_response("any ideas?", _history("my back still hurts", "it is getting worse"))
    assert reply.text == responder.NOT_IMPROVING
    assert reply.suggest_appointment is True


def test_짧은_질문은_자세히_물어봄():
    assert rule_based_response("help").text == responder.ASK_FOR_DETAILS


def test_추가_설명_요청_뒤의_짧은_답은_받아들임():
    history = _history("hmm") + [{"role": "assistant", "text": responder.ASK_FOR_DETAILS}]
    assert rule_based_response("since yesterday", history).text == responder.DEFAULT_WELLNESS


def test_게스트_응답():
    assert rule_based_response("hi", guest=True).text == responder.GUEST_GREETING
    assert rule_based_response("what services do you offer", guest=True).text == responder.GUEST_SERVICES
    assert rule_based_response("blorp", guest=True).text == responder.GUEST_DEFAULT
    # 게스트 경로는 증상 규칙을 쓰지 않음
    assert rule_based_response("I have a severe headache", guest=True).suggest_appointment is False


def test_규칙_기반_노드_출력():
    state = {"message": "I have a mild fever", "history": [], "guest": False, "user_id": "user-1"}
    update = asyncio.run(rule_based_fallback_node(state, {}))

    assert update["stage"] == "rule_based_fallback"
    assert update["outcome"] == "answered"
    assert update["response"] == responder.FEVER_MILD
    assert update["using_fallback"] is True
    assert update["resolved_by"] == "rule_based"
