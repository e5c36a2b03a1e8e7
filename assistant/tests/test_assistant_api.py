"""
AI 어시스턴트 API 테스트 (camelCase 입출력, 429 변환, 게스트, 프로필, 관리자 조회)
"""
from service.provider_service import DispatchOutcome, OutcomeKind


def test_메시지_응답은_camelCase(client, auth_headers):
    response = client.post(
        "/api/assistant/message",
        json={
            "message": "I've had a severe headache for 3 days",
            "conversationHistory": [
                {"sender": "user", "text": "hi"},
                {"sender": "ai", "text": "Hello! How can I help?"},
            ],
        },
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["suggestAppointment"] is True
    assert data["selfCareAppropriate"] is True
    assert data["fromCache"] is False
    assert data["usingFallback"] is False
    assert data["quotaExceeded"] is False
    assert data["retryAfter"] is None
    assert data["resolvedBy"] == "primary"
    assert data["isGuest"] is False
    assert data["text"]


def test_대화_기록이_제공자까지_전달(client, auth_headers, api_dispatcher):
    client.post(
        "/api/assistant/message",
        json={"message": "and now?", "conversationHistory": [
            {"sender": "user", "text": "I have a cold"},
            {"sender": "ai", "text": "Rest and drink fluids."},
        ]},
        headers=auth_headers,
    )
    assert api_dispatcher.calls[0].history == [
        {"role": "user", "text": "I have a cold"},
        {"role": "assistant", "text": "Rest and drink fluids."},
    ]


def test_빈_메시지는_422(client, auth_headers):
    response = client.post("/api/assistant/message", json={"message": ""}, headers=auth_headers)
    assert response.status_code == 422


def test_같은_질문_두번이면_캐시(client, auth_headers, api_dispatcher):
    body = {"message": "How much water should I drink?"}
    first = client.post("/api/assistant/message", json=body, headers=auth_headers).json()
    second = client.post("/api/assistant/message", json=body, headers=auth_headers).json()

    assert first["fromCache"] is False
    assert second["fromCache"] is True
    assert second["resolvedBy"] == "cache"
    assert len(api_dispatcher.calls) == 1


def test_사용량_제한_초과는_429와_retryAfter(client, auth_headers, api_dispatcher):
    for i in range(5):
        response = client.post("/api/assistant/message", json={"message": f"question {i} about sleep"},
                               headers=auth_headers)
        assert response.status_code == 200

    response = client.post("/api/assistant/message", json={"message": "one more"}, headers=auth_headers)
    assert response.status_code == 429
    data = response.json()
    assert data["reason"] == "minute"
    assert data["retryAfter"] == "60s"
    assert data["message"]
    assert response.headers["retry-after"] == "60"
    assert len(api_dispatcher.calls) == 5


def test_예산_초과_폴백은_200과_retryAfter(client, auth_headers, api_runtime):
    api_runtime.pool.token_threshold = 10
    response = client.post("/api/assistant/message", json={"message": "I have a sore throat"}, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["quotaExceeded"] is True
    assert data["usingFallback"] is True
    assert data["retryAfter"] == "60s"
    assert data["resolvedBy"] == "rule_based"


def test_모든_제공자_실패해도_200(client, auth_headers, api_dispatcher):
    api_dispatcher.default = DispatchOutcome(OutcomeKind.TRANSIENT, detail="status 503")
    response = client.post("/api/assistant/message", json={"message": "I have a mild fever"}, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["usingFallback"] is True
    assert data["resolvedBy"] == "rule_based"


def test_게스트_메시지는_인증_없이(client):
    response = client.post("/api/assistant/guest-message", json={"message": "What services do you offer?"})
    assert response.status_code == 200
    data = response.json()
    assert data["isGuest"] is True
    assert data["suggestAppointment"] is False


def test_프로필_저장후_조회(client, auth_headers):
    profile = {"name": "Kim", "dateOfBirth": "1990-06-15", "chronicConditions": "asthma", "allergies": "penicillin"}
    response = client.put("/api/assistant/profile", json=profile, headers=auth_headers)
    assert response.status_code == 200

    data = client.get("/api/assistant/profile", headers=auth_headers).json()
    assert data["name"] == "Kim"
    assert data["dateOfBirth"] == "1990-06-15"
    assert data["chronicConditions"] == "asthma"


def test_프로필이_시스템_프롬프트에_반영(client, auth_headers, api_dispatcher):
    client.put("/api/assistant/profile", json={"name": "Kim", "chronicConditions": "asthma"}, headers=auth_headers)
    client.post("/api/assistant/message", json={"message": "I have a cough"}, headers=auth_headers)

    fragment = api_dispatcher.calls[-1].fragment
    assert "- Name: Kim" in fragment
    assert "- Medical conditions: asthma" in fragment


def test_프로필이_없으면_빈_프로필(client, auth_headers):
    data = client.get("/api/assistant/profile", headers=auth_headers).json()
    assert data["name"] is None


# ===== 관리자 / 사용량 조회 =====

def test_내_사용량_조회(client, auth_headers):
    client.post("/api/assistant/message", json={"message": "I have a cold"}, headers=auth_headers)
    data = client.get("/api/admin/usage", headers=auth_headers).json()

    assert data["user_id"] == "user-1"
    assert data["requests_last_minute"] == 1
    assert data["tokens_last_day"] == 60
    assert data["limits"]["per_minute"] == 5


def test_관리자는_키_상태를_마스킹해서_조회(client, admin_headers):
    response = client.get("/api/admin/credentials", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert [item["slot"] for item in data] == [0, 1]
    assert data[0]["key"] == "key-…0001"
    assert "key-primary-0001" not in response.text


def test_관리자_캐시_조회와_청소(client, auth_headers, admin_headers, api_runtime, clock):
    client.post("/api/assistant/message", json={"message": "I have a cold"}, headers=auth_headers)

    status = client.get("/api/admin/cache", headers=admin_headers).json()
    assert status["entries"] == 1
    assert status["max_entries"] == 1000

    clock.advance(api_runtime.cache.ttl_seconds + 1)
    assert client.post("/api/admin/cache/sweep", headers=admin_headers).json() == {"removed": 1}
