"""
LLM 호출 노드: 티어별 시도 (primary → degraded → emergency → secondary)

네 티어 모두 같은 조각 루프를 공유합니다:
1. 프롬프트를 티어의 청크 크기로 분할 (emergency는 단발)
2. 조각을 순서대로 보내고, 보낸 조각과 응답을 대화 기록에 누적
3. 조각 사이에 티어별 지연 (뒤 티어일수록 길게)
4. QUOTA_EXCEEDED / AUTH_ERROR → 키 쿨다운 + 교체 → 같은 조각을 딱 한 번 재시도
5. TRANSIENT / EMPTY → 그 조각 자리에 placeholder를 넣고 다음 조각 계속
6. 이어붙인 응답이 부실하면(output_guard) 티어 실패 → 다음 티어
"""
from dataclasses import dataclass

from langchain_core.runnables import RunnableConfig

from agent.nodes.output_guard import is_adequate_response
from agent.runtime import AssistantRuntime, get_runtime
from agent.state import AssistantState
from agent.transitions import DEGRADED_ATTEMPT, EMERGENCY_ATTEMPT, PRIMARY_ATTEMPT, SECONDARY_ATTEMPT
from core.logger import get_logger
from core.metrics import metrics_store
from service.chunk_service import plan_chunks
from service.conversation_service import ConversationTurn
from service.provider_service import FRAGMENT_PLACEHOLDER, DispatchOutcome, ModelTier, OutcomeKind
from service.prompt_service import emergency_prompt

logger = get_logger("llm")

_CREDENTIAL_FAILURES = (OutcomeKind.QUOTA_EXCEEDED, OutcomeKind.AUTH_ERROR)
NO_CREDENTIAL = DispatchOutcome(OutcomeKind.QUOTA_EXCEEDED, detail="no usable credential")


@dataclass
class TierResult:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    answered_fragments: int = 0


async def send_fragment(
    runtime: AssistantRuntime,
    tier: ModelTier,
    conversation: list[ConversationTurn],
    text: str,
    pooled: bool,
) -> DispatchOutcome:
    """조각 1개 전송: 풀 티어면 키 교체 후 1회 재시도까지 포함"""
    if not pooled:
        return await runtime.dispatcher.send(None, tier, conversation, text)

    pool = runtime.pool
    slot = await pool.select_active()
    if slot is None:
        return NO_CREDENTIAL

    outcome = await runtime.dispatcher.send(slot, tier, conversation, text)
    if outcome.kind in _CREDENTIAL_FAILURES:
        hint = outcome.retry_after if outcome.kind == OutcomeKind.QUOTA_EXCEEDED else None

        # RotateAndRetry: 같은 조각을 새 키로 한 번만 (다른 요청이 이미 교체했으면 그 키로)
        slot, rotated = await pool.mark_exceeded_and_rotate(slot, hint)
        if rotated:
            metrics_store.record_rotation()
        if slot is None:
            return outcome
        outcome = await runtime.dispatcher.send(slot, tier, conversation, text)
        if outcome.kind in _CREDENTIAL_FAILURES:
            hint = outcome.retry_after if outcome.kind == OutcomeKind.QUOTA_EXCEEDED else None
            await pool.mark_exceeded_and_rotate(slot, hint, rotate=False)
            return outcome

    if outcome.ok:
        await pool.record_usage(slot, outcome.input_tokens, outcome.output_tokens)
        await pool.record_success(slot)
    return outcome


async def run_tier(
    runtime: AssistantRuntime,
    tier: ModelTier,
    fragments: list[str],
    history: list[ConversationTurn],
    pooled: bool,
) -> TierResult:
    conversation = list(history) if tier.use_history else []
    result = TierResult(text="")
    answers = []

    for index, fragment in enumerate(fragments):
        if index:
            await runtime.sleep(tier.fragment_delay)

        outcome = await send_fragment(runtime, tier, conversation, fragment, pooled)
        if outcome.ok:
            answer = outcome.text
            result.input_tokens += outcome.input_tokens
            result.output_tokens += outcome.output_tokens
            result.answered_fragments += 1
        else:
            answer = FRAGMENT_PLACEHOLDER
            logger.info(
                "fragment failed, placeholder substituted",
                extra={"extra_data": {"tier": tier.name, "fragment": index, "kind": outcome.kind.value}},
            )

        answers.append(answer)
        # 제공자는 분할을 모르므로 앞 조각과 그 응답을 기록으로 이어서 보냄
        conversation.append({"role": "user", "text": fragment})
        conversation.append({"role": "assistant", "text": answer})

    result.text = "\n\n".join(answers)
    return result


def _tier_update(state: AssistantState, stage: str, tier: ModelTier, result: TierResult, min_length: int) -> dict:
    update = {
        "stage": stage,
        "input_tokens": state.get("input_tokens", 0) + result.input_tokens,
        "output_tokens": state.get("output_tokens", 0) + result.output_tokens,
    }
    if is_adequate_response(result.text, min_length):
        return {**update, "outcome": "success", "response": result.text, "resolved_by": tier.name}

    metrics_store.record_tier_failure(tier.name)
    logger.warning(
        "tier produced no usable answer",
        extra={"extra_data": {"tier": tier.name, "model": tier.model, "answered_fragments": result.answered_fragments}},
    )
    return {**update, "outcome": "failed", "failed_tiers": [*state.get("failed_tiers", []), tier.name]}


async def _chunked_attempt(state: AssistantState, config: RunnableConfig, stage: str, tier: ModelTier, pooled: bool) -> dict:
    runtime = get_runtime(config)
    fragments = [fragment.text for fragment in plan_chunks(state["prompt"], tier.chunk_size)]
    result = await run_tier(runtime, tier, fragments, state.get("history", []), pooled)
    return _tier_update(state, stage, tier, result, runtime.min_response_length)


async def primary_attempt_node(state: AssistantState, config: RunnableConfig) -> dict:
    runtime = get_runtime(config)
    return await _chunked_attempt(state, config, PRIMARY_ATTEMPT, runtime.primary, pooled=True)


async def degraded_attempt_node(state: AssistantState, config: RunnableConfig) -> dict:
    """성능 낮은 모델 + 더 작은 청크 / 출력 예산"""
    runtime = get_runtime(config)
    return await _chunked_attempt(state, config, DEGRADED_ATTEMPT, runtime.degraded, pooled=True)


async def emergency_attempt_node(state: AssistantState, config: RunnableConfig) -> dict:
    """최소 단발 호출: 대화 기록 없음, 최소 지시문 + 잘린 메시지, 가장 작은 출력 예산"""
    runtime = get_runtime(config)
    tier = runtime.emergency
    fragments = [emergency_prompt(state["message"], runtime.emergency_message_length)]
    result = await run_tier(runtime, tier, fragments, [], pooled=True)
    return _tier_update(state, EMERGENCY_ATTEMPT, tier, result, runtime.min_response_length)


async def secondary_attempt_node(state: AssistantState, config: RunnableConfig) -> dict:
    """독립된 보조 제공자: 자격증명이 설정되지 않았으면 건너뜀"""
    runtime = get_runtime(config)
    if runtime.secondary is None:
        return {"stage": SECONDARY_ATTEMPT, "outcome": "skipped"}
    return await _chunked_attempt(state, config, SECONDARY_ATTEMPT, runtime.secondary, pooled=False)
