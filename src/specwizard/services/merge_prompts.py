"""仕様書マージで生成器に渡す指示文。"""

import json
from collections.abc import Sequence

from specwizard.models.session import Message
from specwizard.models.specification import Specification

_OUTPUT_SCHEMA = """{
  "spec": {
    "plainEnglishSummary": {
      "overview": "1-2 sentence elevator pitch describing what the product does and who it is for",
      "targetUsers": "clear description of who will use this",
      "keyFeatures": ["feature 1", "feature 2"],
      "flows": ["user workflow 1: describe a key user journey"],
      "rulesAndConstraints": ["business rule 1"],
      "nonFunctional": ["performance expectation"],
      "integrations": ["external system 1"],
      "mvpDefinition": {"included": ["core feature for v1"], "excluded": ["future feature"]}
    },
    "formalPRD": {
      "introduction": "professional introduction paragraph for the PRD",
      "glossary": {"Term": "Definition"},
      "requirements": [
        {
          "id": "req-1",
          "userStory": "As a [user], I want [goal], so that [benefit]",
          "acceptanceCriteria": ["WHEN [trigger] THEN THE System SHALL [response]"],
          "priority": "must-have"
        }
      ],
      "nonFunctionalRequirements": [
        {"id": "nfr-1", "category": "Performance", "description": "THE System SHALL [requirement]"}
      ]
    }
  },
  "missingSections": ["flows"],
  "corrections": [{"field": "targetUsers", "old": "previous value or item id", "new": "replacement"}]
}"""

_UPDATE_RULES = """CRITICAL RULES - INCREMENTAL UPDATE MODE:

1. PRESERVE ALL EXISTING CONTENT
   - The CURRENT SPEC contains information captured from ALL previous conversation.
   - Keep every existing item unless the NEW MESSAGES explicitly contradict it.
   - Return the COMPLETE specification object, never a partial patch.

2. CORRECTIONS VS ADDITIONS VS REFINEMENTS
   - Addition (the user mentions something new): APPEND it to the relevant list.
   - Correction ("change X to Y", "not X, Y", "actually it's Y"): REPLACE the old value
     and record it in "corrections" with the field name, the old value (or requirement id)
     and the new value.
   - Refinement (more detail about an existing item): ENHANCE the existing item in place.

3. LISTS ARE ADDITIVE
   - keyFeatures, flows, rulesAndConstraints, nonFunctional, integrations, requirements and
     nonFunctionalRequirements only grow, except for items listed in "corrections".
   - Keep requirement and NFR ids stable; number new ones after the highest existing id.

4. MISSING SECTIONS
   - List the core sections that are still empty or insufficient, drawn from:
     overview, targetUsers, keyFeatures, flows.

WRITING QUALITY:
- Write the overview as a polished elevator pitch, not raw conversation text.
- Only include information that was actually discussed; do not use placeholders.
- Use UK English."""

_FIRST_RUN_NOTE = """This is the FIRST update for this session: the current spec is empty, so build it from
the new messages alone and leave sections empty when nothing was said about them."""

_FINALIZE_TASK = """TASK:
- Tighten wording where needed and make the structure clear.
- Do NOT introduce new features, flows, requirements, glossary terms or facts.
- Keep every requirement and NFR id exactly as it is.
- Return the COMPLETE specification object and an empty "corrections" list."""


def _format_messages(messages: Sequence[Message]) -> str:
    return "\n\n".join(f"{m.role.upper()}: {m.content}" for m in messages)


def build_update_prompt(spec: Specification, messages: Sequence[Message], is_first_run: bool) -> str:
    """更新モードの指示文を組み立てる。"""
    parts = [
        "You are updating a product specification based on new conversation.",
        f"CURRENT SPEC (JSON):\n{json.dumps(spec.to_generator_json(), indent=2, ensure_ascii=False)}",
        f"NEW MESSAGES:\n{_format_messages(messages)}",
        _UPDATE_RULES,
    ]
    if is_first_run:
        parts.append(_FIRST_RUN_NOTE)
    parts.append(f"Return JSON only, with this exact structure:\n{_OUTPUT_SCHEMA}")
    return "\n\n".join(parts)


def build_finalize_prompt(spec: Specification) -> str:
    """確定モードの指示文を組み立てる。"""
    return "\n\n".join(
        [
            "You are finalising a product specification for handoff to a development team.",
            f"CURRENT SPEC (JSON):\n{json.dumps(spec.to_generator_json(), indent=2, ensure_ascii=False)}",
            _FINALIZE_TASK,
            f"Return JSON only, with the same structure as always:\n{_OUTPUT_SCHEMA}",
        ]
    )
