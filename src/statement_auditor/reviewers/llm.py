import json
import os
from collections.abc import Sequence

from openai import OpenAI, OpenAIError

from statement_auditor.core.settings import DEFAULT_OPENAI_MODEL
from statement_auditor.errors import ReviewError
from statement_auditor.logger import get_logger
from statement_auditor.models import AIAnnotation, Anomaly, Transaction

from .base import AnomalyReviewer

logger = get_logger(__name__)

INSTRUCTIONS = (
    "You are a banking audit assistant reviewing anomalies found on bank statements "
    "of businesses in the CEMAC zone. You never add or remove anomalies."
)


class LLMReviewer(AnomalyReviewer):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str | None = None,
        batch_size: int = 20,
    ):
        self.client = OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
        )
        self.model = model
        self.batch_size = batch_size

    def classify(
        self, transactions: Sequence[Transaction], anomalies: Sequence[Anomaly]
    ) -> dict[str, AIAnnotation]:
        annotations: dict[str, AIAnnotation] = {}
        for start in range(0, len(anomalies), self.batch_size):
            batch = anomalies[start:start + self.batch_size]
            annotations.update(self._review_batch(batch))
        logger.info("[REVIEW] %d annotation(s) for %d anomaly(ies)", len(annotations), len(anomalies))
        return annotations

    def _review_batch(self, anomalies: Sequence[Anomaly]) -> dict[str, AIAnnotation]:
        prompt = self._build_prompt(anomalies)
        try:
            response = self.client.responses.create(
                model=self.model,
                instructions=INSTRUCTIONS,
                input=prompt,
                temperature=0.0,
            )
        except OpenAIError as exc:
            raise ReviewError(f"LLM request failed: {exc}") from exc

        output = self._extract_output_text(response)
        if output is None:
            raise ReviewError("LLM returned no text")
        return self._parse_annotations(output, {anomaly.id for anomaly in anomalies})

    @staticmethod
    def _build_prompt(anomalies: Sequence[Anomaly]) -> str:
        lines = []
        for anomaly in anomalies:
            labels = "; ".join(f"{t.date} {t.description} {t.amount:.2f}" for t in anomaly.transactions)
            findings = "; ".join(f"{item.description}: {item.value}" for item in anomaly.evidence[:6])
            lines.append(
                f"- id={anomaly.id} type={anomaly.type.value} severity={anomaly.severity.value} "
                f"amount={anomaly.amount:.2f} transactions=[{labels}] evidence=[{findings}]"
            )
        listing = "\n".join(lines)
        return f"""
        Review the following anomalies detected on a bank statement.
        {listing}

        Answer with a JSON array only. One object per anomaly id with the keys:
        "anomaly_id", "explanation", "suggested_actions" (list of strings),
        "regulatory_reference" (COBAC/CEMAC text when relevant, otherwise null),
        "fraud_suspected" (true or false).
        """

    @staticmethod
    def _parse_annotations(output: str, known_ids: set[str]) -> dict[str, AIAnnotation]:
        text = output.strip()
        if text.startswith("```"):
            text = text.strip("`")
            text = text.split("\n", 1)[1] if "\n" in text else ""
        try:
            items = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ReviewError(f"LLM answer is not valid JSON: {exc}") from exc
        if not isinstance(items, list):
            raise ReviewError("LLM answer is not a JSON array")

        annotations: dict[str, AIAnnotation] = {}
        for item in items:
            if not isinstance(item, dict):
                continue
            anomaly_id = item.get("anomaly_id")
            if anomaly_id not in known_ids:
                logger.warning("[REVIEW] Ignoring annotation for unknown anomaly %s", anomaly_id)
                continue
            annotations[anomaly_id] = AIAnnotation(
                explanation=item.get("explanation"),
                suggested_actions=[str(action) for action in item.get("suggested_actions") or []],
                regulatory_reference=item.get("regulatory_reference"),
                fraud_suspected=item.get("fraud_suspected"),
            )
        return annotations

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if output_text:
            return output_text

        parts: list[str] = []
        for item in getattr(response, "output", None) or []:
            for block in getattr(item, "content", None) or []:
                if getattr(block, "type", None) in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)
        return "".join(parts) or None


def reviewer_from_env() -> LLMReviewer | None:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.warning("OPENAI_API_KEY not found. AI review disabled.")
        return None
    model = os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL
    base_url = os.getenv("OPENAI_BASE_URL")
    logger.info("AI reviewer enabled: model=%s, base_url=%s", model, base_url or "default")
    return LLMReviewer(api_key=api_key, model=model, base_url=base_url)
