"""
Budget Preflight 노드: 실패가 예상되는 호출은 아예 보내지 않음

1. 시스템 프롬프트 + 메시지 조립
2. 추정 토큰이 절대 상한을 넘으면 대폭 축소한 프롬프트로 교체
3. 쓸 수 있는 키가 하나도 없으면 풀 티어 3개를 건너뛰고 보조 제공자로
4. 현재 키의 분당 자체 예산을 넘으면 1회 교체 → 그래도 넘으면 호출 없이 규칙 기반 응답
"""
from langchain_core.runnables import RunnableConfig

from agent.runtime import get_runtime
from agent.state import AssistantState
from agent.transitions import BUDGET_PREFLIGHT
from core.logger import get_logger
from service.prompt_service import GUEST_SYSTEM_PROMPT, build_system_prompt, compose_prompt, shorten_prompt
from service.token_service import estimate_tokens

logger = get_logger("preflight")


def build_prompt(state: AssistantState) -> str:
    system_prompt = GUEST_SYSTEM_PROMPT if state.get("guest") else build_system_prompt(state.get("profile"))
    return compose_prompt(system_prompt, state["message"])


async def budget_preflight_node(state: AssistantState, config: RunnableConfig) -> dict:
    runtime = get_runtime(config)
    prompt = build_prompt(state)
    shortened = False

    # 1. 절대 상한
    estimated = estimate_tokens(prompt)
    if estimated > runtime.max_prompt_tokens:
        prompt = shorten_prompt(prompt, runtime.short_system_prompt_length, runtime.short_message_length)
        shortened = True
        logger.info(
            "prompt over token ceiling, shortened",
            extra={"extra_data": {"estimated": estimated, "shortened_estimate": estimate_tokens(prompt)}},
        )

    result = {"stage": BUDGET_PREFLIGHT, "prompt": prompt, "prompt_shortened": shortened}

    # 2. 쓸 수 있는 키
    slot = await runtime.pool.select_active()
    if slot is None:
        logger.warning("no usable credential in pool, skipping to secondary provider")
        return {**result, "outcome": "no_credential"}

    # 3. 키별 자체 예산: 초과면 1회만 교체
    needed = estimate_tokens(prompt)
    if needed > await runtime.pool.remaining_budget(slot):
        rotated = await runtime.pool.rotate()
        candidate = await runtime.pool.select_active() if rotated else None
        if candidate is None or needed > await runtime.pool.remaining_budget(candidate):
            retry_after = await runtime.pool.seconds_until_window_reset(candidate or slot)
            logger.warning(
                "prompt exceeds credential budget, answering without network call",
                extra={"extra_data": {"needed_tokens": needed, "retry_after": retry_after}},
            )
            return {**result, "outcome": "over_budget", "quota_exceeded": True, "retry_after": retry_after}

    return {**result, "outcome": "ok"}
