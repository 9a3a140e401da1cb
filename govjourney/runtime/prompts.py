"""
System prompt assembly.

The prompt is built from fixed fragments plus deterministic renderings of
the journey state, so the same inputs always hash to the same prompt.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from govjourney.artefacts.schema import ConsentModel, StateInstructions
from govjourney.journey.field_collector import FieldCollector
from govjourney.journey.state_machine import StateMachine


NEED_TO_ASK = "NEED TO ASK"

SEPARATOR = "---"

ACCURACY_GUARDRAILS = """\
ACCURACY GUARDRAILS (CRITICAL):
- Do NOT fabricate specific payment amounts (e.g. "£393.45/month"). Instead say "The department will calculate and confirm your exact payment amount."
- Do NOT fabricate specific payment dates. Instead explain the usual waiting period for the service.
- Do NOT fabricate claim reference numbers. Instead say "You will receive a reference number by email/post."
- Do NOT perform benefit calculations; they depend on many factors only the department can assess.
- When presenting data from the citizen's records, show EXACTLY what is in the data. Do not embellish or assume."""

TITLE_INSTRUCTIONS = """\
CONVERSATION TITLE:
Since this is the start of a new conversation, include a "title" field in the JSON block at the end of your response.
The title should be a short 3-8 word phrase describing the user's intent or action (e.g. "Renewing MOT for Ford Focus", "Understanding PIP eligibility")."""

TASK_INSTRUCTIONS = """\
ACTIONABLE TASKS:
When your response contains actionable next steps, include them in the "tasks" array of the JSON block.
Each task object has these fields:
- "description": short summary (max 60 chars)
- "detail": one-sentence explanation (max 150 chars)
- "type": "agent" (something you can do) or "user" (something the citizen must do)
- "dueDate": optional, ISO date string YYYY-MM-DD (only when there is a genuine deadline)
- "dataNeeded": optional array of persona data field names relevant to the task

Rules:
- Maximum 3 tasks per response
- Only create tasks for genuinely actionable items, not general advice"""

STRUCTURED_OUTPUT_INSTRUCTIONS = """\
STRUCTURED OUTPUT FORMAT (CRITICAL):
At the END of every response, you MUST append a fenced JSON block containing structured metadata.
The block must be the LAST thing in your response, after all conversational text.
Format:
```json
{
  "title": "Short title or null",
  "tasks": [],
  "stateTransition": "trigger-name or null"
}
```

Rules:
- ALWAYS include the JSON block, even if all fields are null/empty
- "title": set only when instructed (first message of a new conversation), otherwise null
- "tasks": array of task objects (see ACTIONABLE TASKS above), or empty array []
- "stateTransition": the trigger name for the current state transition, or null if none
- The JSON block will be stripped before showing your response to the citizen"""

FACT_EXTRACTION_INSTRUCTIONS = """\
PERSONAL DATA EXTRACTION:
When the user reveals personal facts in conversation, include an "extractedFacts" array in your JSON block.
Rules:
- Only extract NEW facts not already known from persona data
- Max 5 facts per response
- Use snake_case keys (e.g. "number_of_children", "lives_in", "marital_status")
- Confidence levels: "high" (user stated directly), "medium" (strongly implied), "low" (loosely inferred)
- Include a short source_snippet from their message

Example:
"extractedFacts": [
  { "key": "number_of_daughters", "value": 2, "confidence": "high", "source_snippet": "I have 2 daughters" }
]"""

TRANSITION_INSTRUCTIONS = """\
STATE TRANSITIONS:
When you determine a state transition should happen, set the "stateTransition" field in the JSON block to the trigger name.
For example: "stateTransition": "verify-identity"
IMPORTANT: Only set ONE state transition per response. Do NOT skip ahead or combine steps.
IMPORTANT: For states that collect data (housing, bank details, income), do NOT set a transition until the user has actually provided the information in a message. Ask for the data and STOP; wait for their reply."""


def hash_prompt(prompt: str) -> str:
    """Stable short hash of the assembled system prompt."""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]


def _mapping(persona: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = persona.get(key)
    return value if isinstance(value, dict) else {}


def _employment_status(persona: Dict[str, Any]) -> str:
    if isinstance(persona.get("employment_status"), str):
        return persona["employment_status"]
    employment = persona.get("employment")
    if not isinstance(employment, dict):
        return ""
    if isinstance(employment.get("status"), str):
        return employment["status"]
    for value in employment.values():
        if isinstance(value, dict) and isinstance(value.get("status"), str):
            return value["status"]
    return ""


def _employment_detail(persona: Dict[str, Any]) -> str:
    if persona.get("employer"):
        return f" (employer: {persona['employer']})"
    employment = persona.get("employment")
    if not isinstance(employment, dict):
        return ""

    detail = ""
    nested = next((v for v in employment.values() if isinstance(v, dict)), None)
    if nested is not None:
        if nested.get("previousEmployer"):
            detail += (
                f" (previously: {nested['previousEmployer']}, "
                f"ended: {nested.get('employmentEndDate') or 'unknown'}, "
                f"reason: {nested.get('endReason') or 'unknown'})"
            )
        elif nested.get("employer"):
            detail += f" (employer: {nested['employer']})"
    if employment.get("previousEmployer"):
        detail += f" (previously: {employment['previousEmployer']})"
    if employment.get("businessName"):
        detail += f" (business: {employment['businessName']})"
    return detail


def build_data_on_file(persona: Dict[str, Any]) -> str:
    """
    Render the citizen's record for the prompt.

    Accepts both flat keys (``name``, ``date_of_birth``) and the nested
    profile shape (``primaryContact``, ``financials``); anything missing is
    marked as something the agent needs to ask for.
    """
    contact = _mapping(persona, "primaryContact")
    financials = _mapping(persona, "financials")
    address = persona.get("address") if isinstance(persona.get("address"), dict) else None

    name = persona.get("name")
    if not name and contact.get("firstName"):
        name = f"{contact['firstName']} {contact.get('lastName', '')}".strip()
    dob = persona.get("date_of_birth") or contact.get("dateOfBirth")
    ni_number = persona.get("national_insurance_number") or contact.get("nationalInsuranceNumber")

    savings = persona.get("savings")
    if savings is None and isinstance(financials.get("savingsAccount"), dict):
        savings = financials["savingsAccount"].get("balance") or 0

    if address:
        parts = [address.get("line_1") or address.get("line1"), address.get("city"), address.get("postcode")]
        address_text = ", ".join(str(p) for p in parts if p) or NEED_TO_ASK
    else:
        address_text = NEED_TO_ASK

    status = _employment_status(persona)
    employment_line = f"- Employment status: {status if status and status != 'unknown' else NEED_TO_ASK}"
    employment_line += _employment_detail(persona)

    housing = (address or {}).get("housingStatus") or f"{NEED_TO_ASK} (citizen must provide)"

    accounts = financials.get("bankAccounts")
    if not isinstance(accounts, list):
        accounts = []
    accounts = [a for a in accounts if isinstance(a, dict)]
    if accounts:
        bank_text = ", ".join(
            f"{a.get('bank') or a.get('label')} (****{str(a.get('accountNumber') or '')[-4:]})"
            for a in accounts
        )
    elif persona.get("bank_account"):
        bank_text = "Yes (details not on file)"
    else:
        bank_text = f"{NEED_TO_ASK} (citizen must provide)"

    lines = [
        "DATA ON FILE (from citizen's records; use these values, do not make up others):",
        f"- Name: {name or NEED_TO_ASK}",
        f"- DOB: {dob or NEED_TO_ASK}",
        f"- NI Number: {ni_number or NEED_TO_ASK}",
        f"- Address: {address_text}",
        employment_line,
        f"- Savings: {f'£{savings}' if savings is not None else NEED_TO_ASK}",
        f"- Housing tenure: {housing}",
        f"- Bank accounts: {bank_text}",
    ]
    return "\n".join(lines)


def build_state_context(
    machine: StateMachine,
    persona: Optional[Dict[str, Any]] = None,
    consent: Optional[ConsentModel] = None,
    instructions: Optional[StateInstructions] = None,
) -> str:
    """Current state, legal next moves and per-state guidance."""
    current = machine.get_state()
    lines: List[str] = [
        "STATE MODEL JOURNEY:",
        f"Current state: {current}",
        f"Is terminal: {'YES (journey complete)' if machine.is_terminal() else 'NO (journey in progress)'}",
    ]

    allowed = machine.allowed_transitions()
    if allowed:
        moves = ", ".join(f"{t.trigger} → {t.to_state}" for t in allowed)
        lines.append(f"Available transitions: {moves}")

    if instructions is not None and instructions.instructions.get(current):
        lines.append("")
        lines.append("INSTRUCTIONS FOR THIS STATE:")
        lines.append(instructions.instructions[current])

    if persona is not None:
        lines.append("")
        lines.append(build_data_on_file(persona))

    if consent is not None and consent.grants:
        lines.append("")
        lines.append("CONSENT REQUIREMENTS:")
        for grant in consent.grants:
            lines.append(f"- {grant.id}: {grant.description} (data: {', '.join(grant.data_shared)})")

    lines.append("")
    lines.append(TRANSITION_INSTRUCTIONS)
    return "\n".join(lines)


def build_field_context(collector: FieldCollector, limit: int = 3) -> str:
    """Collected/missing fields plus the few the agent should ask for next."""
    text = collector.to_context()
    next_fields = collector.next_required_fields(limit)
    if next_fields:
        text += (
            "\n\nASK NEXT (one or two at a time, in this order): "
            + ", ".join(next_fields)
        )
    return text


@dataclass
class PromptInputs:
    """Everything the system prompt is assembled from."""

    agent: str
    scenario: str
    agent_prompt: str = ""
    persona_prompt: str = ""
    scenario_prompt: str = ""
    persona_data: Optional[Dict[str, Any]] = None
    service_context: str = ""
    facts_already_known: str = ""
    unresolved_contradictions: str = ""
    generate_title: bool = False
    next_fields_limit: int = 3


def build_system_prompt(
    inputs: PromptInputs,
    machine: Optional[StateMachine] = None,
    consent: Optional[ConsentModel] = None,
    instructions: Optional[StateInstructions] = None,
    collector: Optional[FieldCollector] = None,
) -> str:
    persona = inputs.persona_data or {}
    parts: List[str] = [
        inputs.agent_prompt,
        SEPARATOR,
        inputs.persona_prompt,
        SEPARATOR,
        inputs.scenario_prompt,
        SEPARATOR,
        "PERSONA DATA AVAILABLE:\n"
        "You have access to the following data about the user. "
        "Use this according to your agent personality.\n\n"
        + json.dumps(persona, indent=2, default=str, ensure_ascii=False),
    ]

    if inputs.service_context:
        parts.append(SEPARATOR)
        parts.append(inputs.service_context)

    parts.append(SEPARATOR)
    parts.append(
        FACT_EXTRACTION_INSTRUCTIONS
        + (inputs.facts_already_known or "")
        + (inputs.unresolved_contradictions or "")
    )

    if machine is not None:
        parts.append(SEPARATOR)
        parts.append(build_state_context(machine, persona, consent, instructions))

    if collector is not None:
        parts.append(SEPARATOR)
        parts.append(build_field_context(collector, inputs.next_fields_limit))

    parts.append(SEPARATOR)
    parts.append(
        f"Remember: Stay in character as {inputs.agent.upper()} agent, communicate "
        f"according to the persona style, and help with the {inputs.scenario} scenario."
    )
    parts.append(ACCURACY_GUARDRAILS)
    if inputs.generate_title:
        parts.append(TITLE_INSTRUCTIONS)
    parts.append(TASK_INSTRUCTIONS)
    parts.append(STRUCTURED_OUTPUT_INSTRUCTIONS)

    return "\n\n".join(parts)
