"""
Output evaluator.

Each criterion yields a score in [0, 1] and passes when the score reaches its
threshold. An answer passes when every required criterion passes and the
weight-averaged score reaches the prompt's pass_threshold.
"""

from typing import Any, List, Optional, Tuple
import json
import re
import structlog
import jsonschema

from langchain_core.messages import HumanMessage, SystemMessage

from promptkit.domain.errors import LLMAdapterError
from promptkit.domain.llm.llm_adapter import LLMAdapter, strip_code_fence, message_text
from promptkit.domain.models.prompt import (
    Prompt, EvaluationCriteria, CriterionKind, OutputFormatType
)
from promptkit.domain.models.run_state import CriterionResult, EvaluationResult

logger = structlog.get_logger(__name__)


OUTPUT_FORMAT_CRITERION = "output_format"

JUDGE_SYSTEM_PROMPT = (
    "You grade answers produced by another assistant. "
    "Reply with a single integer from 0 (fails completely) to 10 (fully satisfies) "
    "followed by a one-sentence justification."
)

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


def parse_json_output(output: str) -> Tuple[bool, Any, Optional[str]]:
    """Parse an answer as JSON, tolerating a surrounding code fence"""

    try:
        return True, json.loads(strip_code_fence(output)), None
    except json.JSONDecodeError as e:
        return False, None, f"not valid JSON: {e.msg}"


class OutputEvaluator:
    """Scores final answers against a prompt's evaluation criteria"""

    def __init__(self, judge: Optional[LLMAdapter] = None):
        self.judge = judge

    def criteria_for(self, prompt: Prompt) -> List[EvaluationCriteria]:
        """Prompt criteria plus the implicit output-format check"""

        criteria = list(prompt.evaluation_criteria)
        output_format = prompt.output_format
        names = {c.name for c in criteria}

        if output_format and output_format.type == OutputFormatType.JSON and OUTPUT_FORMAT_CRITERION not in names:
            criteria.append(EvaluationCriteria(
                name=OUTPUT_FORMAT_CRITERION,
                kind=CriterionKind.JSON_SCHEMA,
                description="Answer must be JSON in the declared format",
                value=output_format.json_schema,
            ))

        return criteria

    async def evaluate(self, prompt: Prompt, output: str, user_input: str = "") -> EvaluationResult:
        """Evaluate a final answer"""

        criteria = self.criteria_for(prompt)

        parsed_output = None
        if prompt.output_format and prompt.output_format.type == OutputFormatType.JSON:
            ok, parsed, _ = parse_json_output(output)
            parsed_output = parsed if ok else None

        if not criteria:
            return EvaluationResult(score=1.0, passed=True, criteria=[], parsed_output=parsed_output)

        results = []
        for criterion in criteria:
            score, detail = await self.score_criterion(criterion, output, user_input)
            score = max(0.0, min(score, 1.0))
            results.append(CriterionResult(
                name=criterion.name,
                score=round(score, 4),
                passed=score >= criterion.threshold,
                required=criterion.required,
                weight=criterion.weight,
                detail=detail
            ))

        total_weight = sum(r.weight for r in results)
        overall = sum(r.score * r.weight for r in results) / total_weight
        required_ok = all(r.passed for r in results if r.required)
        passed = required_ok and overall >= prompt.pass_threshold

        return EvaluationResult(
            score=round(overall, 4),
            passed=passed,
            criteria=results,
            parsed_output=parsed_output
        )

    async def score_criterion(
        self,
        criterion: EvaluationCriteria,
        output: str,
        user_input: str = ""
    ) -> Tuple[float, Optional[str]]:
        """Score a single criterion, returning (score, detail)"""

        kind = criterion.kind
        lowered = output.lower()

        if kind == CriterionKind.CONTAINS:
            terms = [str(t) for t in criterion.value]
            missing = [t for t in terms if t.lower() not in lowered]
            detail = f"missing: {', '.join(missing)}" if missing else None
            return (len(terms) - len(missing)) / len(terms), detail

        if kind == CriterionKind.NOT_CONTAINS:
            found = [str(t) for t in criterion.value if str(t).lower() in lowered]
            return (0.0, f"found forbidden: {', '.join(found)}") if found else (1.0, None)

        if kind == CriterionKind.REGEX:
            if re.search(criterion.value, output, re.MULTILINE):
                return 1.0, None
            return 0.0, f"no match for /{criterion.value}/"

        if kind == CriterionKind.MAX_LENGTH:
            limit = criterion.value
            if len(output) <= limit:
                return 1.0, None
            return limit / len(output), f"{len(output)} characters exceeds limit of {limit}"

        if kind == CriterionKind.JSON_SCHEMA:
            ok, parsed, error = parse_json_output(output)
            if not ok:
                return 0.0, error
            if criterion.value:
                try:
                    jsonschema.validate(parsed, criterion.value)
                except jsonschema.ValidationError as e:
                    return 0.0, f"schema violation: {e.message}"
            return 1.0, None

        if kind == CriterionKind.LLM_JUDGE:
            return await self._judge(criterion, output, user_input)

        raise ValueError(f"Unsupported criterion kind: {kind}")

    async def _judge(self, criterion: EvaluationCriteria, output: str, user_input: str) -> Tuple[float, Optional[str]]:
        """Ask the judge model for a 0-10 grade"""

        if self.judge is None:
            return 0.0, "no judge model configured"

        rubric = criterion.value or criterion.description or criterion.name
        messages = [
            SystemMessage(content=JUDGE_SYSTEM_PROMPT),
            HumanMessage(content=(
                f"Criterion: {rubric}\n\n"
                f"User request:\n{user_input}\n\n"
                f"Answer to grade:\n{output}"
            ))
        ]

        try:
            reply = await self.judge.generate(messages)
        except LLMAdapterError as e:
            logger.warning("Judge call failed", criterion=criterion.name, error=str(e))
            return 0.0, f"judge failed: {e}"

        text = message_text(reply)
        match = _NUMBER.search(text)
        if not match:
            return 0.0, "judge reply had no score"

        return min(float(match.group()) / 10.0, 1.0), text.strip()[:200]
